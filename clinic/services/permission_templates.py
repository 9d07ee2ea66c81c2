"""
Permission templates and presets.

A template is a named list of permission codes.  A preset points at a
template and carries ``customizations``, an ordered list of
``{"action": "ADD"|"REMOVE", "permission": code}`` edits applied on top
of the template's codes.  Either can be applied to a user's direct
permissions.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.db.models import Count, Q
from rest_framework.exceptions import NotFound, ValidationError

from clinic.exceptions import Conflict
from clinic.models import PermissionPreset, PermissionTemplate
from clinic.services import access, payloads
from clinic.services.audit import log_action

logger = logging.getLogger(__name__)

CUSTOMIZATION_ACTIONS = ('ADD', 'REMOVE')
TEMPLATE_FIELDS = ('name', 'description', 'category', 'permissions', 'version')
PRESET_FIELDS = ('name', 'description', 'customizations', 'is_active')


def _codes(permissions) -> List[str]:
    if not isinstance(permissions, list) or not permissions or not all(
        isinstance(p, str) and p.strip() for p in permissions
    ):
        raise ValidationError({'permissions': 'Permissions must be a non-empty array'})
    return list(dict.fromkeys(p.strip() for p in permissions))


def _customizations(items) -> List[Dict[str, str]]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError({'customizations': 'Customizations must be an array'})
    cleaned = []
    for item in items:
        if (not isinstance(item, dict) or item.get('action') not in CUSTOMIZATION_ACTIONS
                or not isinstance(item.get('permission'), str) or not item['permission'].strip()):
            raise ValidationError(
                {'customizations': 'Each customization needs an ADD or REMOVE action and a permission'}
            )
        cleaned.append({'action': item['action'], 'permission': item['permission'].strip()})
    return cleaned


# ---------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------
def create_template(*, name: str, permissions, description: str = '', category: str = 'General',
                    is_system: bool = False, version: str = '1.0.0', actor=None) -> PermissionTemplate:
    codes = _codes(permissions)
    if PermissionTemplate.objects.filter(name__iexact=name).exists():
        raise Conflict(f"Template with name '{name}' already exists")
    template = PermissionTemplate.objects.create(
        name=name, description=description or '', category=category or 'General',
        permissions=codes, is_system=is_system, version=version or '1.0.0',
    )
    log_action(user=actor, action='permission_template_create', object_type='permission_template',
               object_id=template.pk, detail={'name': name, 'permissions': codes})
    return template


def list_templates(category: Optional[str] = None) -> List[Dict[str, Any]]:
    qs = (
        PermissionTemplate.objects
        .annotate(preset_count=Count('presets', filter=Q(presets__is_active=True)))
        .prefetch_related('presets')
    )
    if category:
        qs = qs.filter(category=category).order_by('name')
    else:
        qs = qs.order_by('-created_at', '-id')
    return [
        {
            **payloads.permission_template(t),
            'presets': [
                {'id': p.id, 'name': p.name, 'description': p.description}
                for p in t.presets.all() if p.is_active
            ],
            'presetCount': t.preset_count,
        }
        for t in qs
    ]


def get_template(pk) -> PermissionTemplate:
    template = PermissionTemplate.objects.filter(pk=pk).first()
    if not template:
        raise NotFound(f"Permission template with ID '{pk}' not found")
    return template


def get_template_by_name(name: str) -> PermissionTemplate:
    template = PermissionTemplate.objects.filter(name=name).first()
    if not template:
        raise NotFound(f"Permission template with name '{name}' not found")
    return template


def template_detail(template: PermissionTemplate) -> Dict[str, Any]:
    return {
        **payloads.permission_template(template),
        'presets': [
            payloads.permission_preset(p)
            for p in template.presets.filter(is_active=True).order_by('-created_at', '-id')
        ],
    }


def update_template(pk, data: Dict[str, Any], *, actor=None) -> PermissionTemplate:
    template = get_template(pk)
    if template.is_system:
        raise ValidationError('System templates cannot be modified')
    name = data.get('name')
    if name and PermissionTemplate.objects.filter(name__iexact=name).exclude(pk=template.pk).exists():
        raise Conflict(f"Template with name '{name}' already exists")
    if 'permissions' in data:
        data = {**data, 'permissions': _codes(data['permissions'])}
    fields = [k for k in TEMPLATE_FIELDS if k in data]
    for k in fields:
        setattr(template, k, data[k])
    if fields:
        template.save(update_fields=fields + ['updated_at'])
        log_action(user=actor, action='permission_template_update', object_type='permission_template',
                   object_id=template.pk, detail={'fields': fields})
    return template


def delete_template(pk, *, actor=None) -> Dict[str, str]:
    template = get_template(pk)
    if template.is_system:
        raise ValidationError('System templates cannot be deleted')
    active = template.presets.filter(is_active=True).count()
    if active:
        raise Conflict(f'Cannot delete template. It has {active} active presets. Delete presets first.')
    # inactive presets go with it
    template.presets.all().delete()
    template.delete()
    log_action(user=actor, action='permission_template_delete', object_type='permission_template', object_id=pk)
    return {'message': 'Permission template deleted successfully'}


def template_categories() -> List[str]:
    return list(
        PermissionTemplate.objects.order_by('category').values_list('category', flat=True).distinct()
    )


# ---------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------
def create_preset(*, name: str, template_pk, description: str = '', customizations=None,
                  actor=None) -> PermissionPreset:
    template = get_template(template_pk)
    if PermissionPreset.objects.filter(name__iexact=name).exists():
        raise Conflict(f"Preset with name '{name}' already exists")
    preset = PermissionPreset.objects.create(
        name=name, description=description or '', template=template,
        customizations=_customizations(customizations),
    )
    log_action(user=actor, action='permission_preset_create', object_type='permission_preset',
               object_id=preset.pk, detail={'name': name, 'template': template.name})
    return preset


def list_presets() -> List[PermissionPreset]:
    return list(
        PermissionPreset.objects.filter(is_active=True).select_related('template').order_by('-created_at', '-id')
    )


def get_preset(pk) -> PermissionPreset:
    preset = PermissionPreset.objects.select_related('template').filter(pk=pk).first()
    if not preset:
        raise NotFound(f"Permission preset with ID '{pk}' not found")
    return preset


def update_preset(pk, data: Dict[str, Any], *, actor=None) -> PermissionPreset:
    preset = get_preset(pk)
    name = data.get('name')
    if name and PermissionPreset.objects.filter(name__iexact=name).exclude(pk=preset.pk).exists():
        raise Conflict(f"Preset with name '{name}' already exists")
    fields = [k for k in PRESET_FIELDS if k in data]
    for k in fields:
        value = _customizations(data[k]) if k == 'customizations' else data[k]
        setattr(preset, k, value)
    template_pk = data.get('template_pk')
    if template_pk and template_pk != preset.template_id:
        preset.template = get_template(template_pk)
        fields.append('template')
    if fields:
        preset.save(update_fields=fields + ['updated_at'])
        log_action(user=actor, action='permission_preset_update', object_type='permission_preset',
                   object_id=preset.pk, detail={'fields': fields})
    return preset


def delete_preset(pk, *, actor=None) -> Dict[str, str]:
    preset = get_preset(pk)
    preset.delete()
    log_action(user=actor, action='permission_preset_delete', object_type='permission_preset', object_id=pk)
    return {'message': 'Permission preset deleted successfully'}


def preset_permissions(pk) -> List[str]:
    """The template's codes with the preset's edits applied in order."""
    preset = get_preset(pk)
    codes = list(preset.template.permissions or [])
    for edit in preset.customizations or []:
        if edit['action'] == 'ADD' and edit['permission'] not in codes:
            codes.append(edit['permission'])
        elif edit['action'] == 'REMOVE':
            codes = [c for c in codes if c != edit['permission']]
    return codes


def apply_to_user(user_pk, *, template_pk=None, preset_pk=None, replace: bool = False,
                  actor=None) -> List[str]:
    """Merge (or with ``replace`` overwrite) a user's direct codes."""
    if (template_pk is None) == (preset_pk is None):
        raise ValidationError('Give exactly one of templateId or presetId')
    if preset_pk is not None:
        codes = preset_permissions(preset_pk)
        source = {'presetId': preset_pk}
    else:
        codes = list(get_template(template_pk).permissions or [])
        source = {'templateId': template_pk}
    user = access.get_user(user_pk)
    merged = codes if replace else list(user.permissions or []) + codes
    result = access.set_user_permissions(user.pk, merged, actor=actor)
    log_action(user=actor, action='permission_template_apply', object_type='user', object_id=user.pk,
               detail={**source, 'replace': replace})
    logger.info('applied %s to user %s (%d codes)', source, user.pk, len(result))
    return result
