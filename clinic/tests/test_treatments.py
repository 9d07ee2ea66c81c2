import pytest
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from clinic.models import Treatment, TreatmentProvider
from clinic.services import treatments as svc

pytestmark = pytest.mark.django_db


@pytest.fixture
def doctor(make_staff):
    return make_staff('house', ['manage_treatments'], provider=True)


@pytest.fixture
def consultant(make_staff):
    return make_staff('wilson', ['manage_treatments'], provider=True)


@pytest.fixture
def treatment(patient, doctor):
    return svc.create_treatment({'patient_id': patient.pk, 'primary_provider_id': doctor.pk,
                                 'title': 'Chest pain workup', 'priority': 'URGENT'})


def test_create_with_team(patient, doctor, consultant):
    t = svc.create_treatment(
        {'patient_id': patient.pk, 'primary_provider_id': doctor.pk, 'title': 'Fracture'},
        additional_providers=[{'provider_id': consultant.pk}, {'provider_id': doctor.pk}],
    )
    roles = dict(t.providers.values_list('provider_id', 'role'))
    assert roles == {doctor.pk: 'PRIMARY', consultant.pk: 'CONSULTANT'}
    assert t.status == Treatment.STATUS_ACTIVE
    assert t.treatment_type == 'CONSULTATION'


def test_create_validation(patient, doctor, make_staff):
    clerk = make_staff('clerk')
    with pytest.raises(NotFound):
        svc.create_treatment({'patient_id': 999, 'primary_provider_id': doctor.pk, 'title': 'x'})
    with pytest.raises(ValidationError):
        svc.create_treatment({'patient_id': patient.pk, 'primary_provider_id': clerk.pk, 'title': 'x'})
    with pytest.raises(ValidationError):
        svc.create_treatment({'patient_id': patient.pk, 'primary_provider_id': doctor.pk, 'title': 'x'},
                             additional_providers=[{'provider_id': clerk.pk}])
    assert not Treatment.objects.exists()


def test_only_care_team_updates(treatment, doctor, consultant, admin_user):
    with pytest.raises(PermissionDenied):
        svc.update_treatment(treatment.pk, {'diagnosis': 'angina'}, actor=consultant.user)
    svc.update_treatment(treatment.pk, {'diagnosis': 'angina'}, actor=doctor.user)
    svc.update_treatment(treatment.pk, {'title': 'Angina'}, actor=admin_user)
    t = Treatment.objects.get(pk=treatment.pk)
    assert (t.title, t.diagnosis) == ('Angina', 'angina')


def test_completing_sets_end_date(treatment, doctor):
    t = svc.update_status(treatment.pk, Treatment.STATUS_COMPLETED, actor=doctor.user)
    assert t.end_date is not None


def test_delete_reserved_to_primary(treatment, doctor, consultant):
    svc.add_provider(treatment.pk, consultant.pk, actor=doctor.user)
    with pytest.raises(PermissionDenied):
        svc.delete_treatment(treatment.pk, actor=consultant.user)
    assert svc.delete_treatment(treatment.pk, actor=doctor.user) == {'message': 'Treatment deleted successfully'}


def test_provider_membership(treatment, doctor, consultant):
    svc.add_provider(treatment.pk, consultant.pk, 'SPECIALIST', actor=doctor.user)
    with pytest.raises(ValidationError):
        svc.add_provider(treatment.pk, consultant.pk, actor=doctor.user)
    with pytest.raises(ValidationError):
        svc.remove_provider(treatment.pk, doctor.pk, actor=doctor.user)

    svc.remove_provider(treatment.pk, consultant.pk, actor=doctor.user)
    member = TreatmentProvider.objects.get(treatment=treatment, provider=consultant)
    assert not member.is_active and member.left_at is not None
    with pytest.raises(PermissionDenied):
        svc.update_status(treatment.pk, 'SUSPENDED', actor=consultant.user)

    again = svc.add_provider(treatment.pk, consultant.pk, actor=doctor.user)
    assert again.pk == member.pk and again.is_active


def test_rejoining_provider_is_rechecked(treatment, doctor, consultant):
    svc.add_provider(treatment.pk, consultant.pk, actor=doctor.user)
    svc.remove_provider(treatment.pk, consultant.pk, actor=doctor.user)

    consultant.is_service_provider = False
    consultant.save(update_fields=['is_service_provider'])
    with pytest.raises(ValidationError):
        svc.add_provider(treatment.pk, consultant.pk, actor=doctor.user)
    assert not TreatmentProvider.objects.get(treatment=treatment, provider=consultant).is_active

    consultant.is_service_provider = True
    consultant.save(update_fields=['is_service_provider'])
    again = svc.add_provider(treatment.pk, consultant.pk, 'SPECIALIST', actor=doctor.user)
    again.refresh_from_db()
    assert again.is_active and again.role == 'SPECIALIST'


def test_links(treatment, patient, doctor):
    follow = svc.create_treatment({'patient_id': patient.pk, 'primary_provider_id': doctor.pk,
                                   'title': 'Follow up', 'treatment_type': 'FOLLOW_UP'})
    with pytest.raises(ValidationError):
        svc.create_link(from_pk=treatment.pk, to_pk=treatment.pk, link_type='FOLLOW_UP', actor=doctor.user)
    link = svc.create_link(from_pk=treatment.pk, to_pk=follow.pk, link_type='FOLLOW_UP', actor=doctor.user)
    with pytest.raises(ValidationError):
        svc.create_link(from_pk=treatment.pk, to_pk=follow.pk, link_type='FOLLOW_UP', actor=doctor.user)

    assert [x['id'] for x in svc.links(treatment.pk)['linkedFrom']] == [link.pk]
    assert [x['id'] for x in svc.links(follow.pk)['linkedTo']] == [link.pk]

    svc.delete_link(link.pk, actor=doctor.user)
    assert svc.links(treatment.pk)['linkedFrom'] == []
    revived = svc.create_link(from_pk=treatment.pk, to_pk=follow.pk, link_type='FOLLOW_UP', actor=doctor.user)
    assert revived.pk == link.pk


def test_transfer(treatment, doctor, consultant):
    with pytest.raises(ValidationError):
        svc.transfer(treatment.pk, doctor.pk, reason='x', actor=doctor.user)
    t = svc.transfer(treatment.pk, consultant.pk, reason='shift change', notes='stable', actor=doctor.user)
    assert t.primary_provider_id == consultant.pk
    roles = dict(t.providers.filter(is_active=True).values_list('provider_id', 'role'))
    assert roles == {doctor.pk: 'CONSULTANT', consultant.pk: 'PRIMARY'}
    note = t.notes.get()
    assert note.content == ('Treatment transferred from House Staff to Wilson Staff. '
                            'Reason: shift change. Notes: stable')


def test_list_filters(treatment, patient, doctor, consultant):
    svc.create_treatment({'patient_id': patient.pk, 'primary_provider_id': consultant.pk, 'title': 'Other'})
    assert svc.list_treatments()['pagination']['total'] == 2
    mine = svc.list_treatments(provider_pk=doctor.pk)
    assert [t['id'] for t in mine['data']] == [treatment.pk]
    assert svc.list_treatments(priority='URGENT')['pagination']['total'] == 1


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
def test_api_create_and_transfer(api, patient, doctor, consultant):
    api.force_authenticate(doctor.user)
    r = api.post('/api/treatments', {
        'patientId': patient.pk, 'primaryProviderId': doctor.pk, 'title': 'Asthma',
        'additionalProviders': [{'providerId': consultant.pk, 'role': 'SPECIALIST'}],
    }, format='json')
    assert r.status_code == 201, r.data
    pk = r.data['id']
    assert sorted(p['role'] for p in r.data['providers']) == ['PRIMARY', 'SPECIALIST']

    r = api.patch(f'/api/treatments/{pk}/status', {'status': 'SUSPENDED'}, format='json')
    assert r.status_code == 200 and r.data['status'] == 'SUSPENDED'

    r = api.post(f'/api/treatments/{pk}/transfer', {'newProviderId': consultant.pk, 'reason': 'leave'},
                 format='json')
    assert r.status_code == 200, r.data
    assert r.data['primaryProviderId'] == consultant.pk
    assert r.data['status'] == 'ACTIVE'


def test_api_viewer_cannot_write(api, treatment, make_staff):
    viewer = make_staff('viewer', ['view_treatments'])
    api.force_authenticate(viewer.user)
    assert api.get(f'/api/treatments/{treatment.pk}').status_code == 200
    r = api.patch(f'/api/treatments/{treatment.pk}', {'title': 'New'}, format='json')
    assert r.status_code == 403
    assert r.data['error']['code'] == 'permission_denied'
