"""
Permission request workflow.

Any signed-in user may ask for a permission and follow their own
requests.  Listing everyone's requests needs one of ``VIEW_CODES``;
deciding is reserved to the named approvers (and admins), which the
service checks.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import check, requires
from clinic.serializers.administration import (
    DecisionSerializer, PermissionRequestQuerySerializer, PermissionRequestSerializer,
    PermissionRequestUpdateSerializer,
)
from clinic.services import payloads
from clinic.services import permission_requests as workflow

VIEW_CODES = ('view_permission_requests', 'view_permission_workflows', 'manage_permission_workflows')
CanView = requires(*VIEW_CODES)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def request_collection(request):
    if request.method == 'GET':
        check(request, *VIEW_CODES)
        q = PermissionRequestQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        return Response([payloads.permission_request(r) for r in workflow.list_requests(**q.validated_data)])

    s = PermissionRequestSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = workflow.create_request(request.user, **s.validated_data)
    return Response(payloads.permission_request(req), status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_requests(request):
    return Response([payloads.permission_request(r) for r in workflow.list_requests(requester_pk=request.user.pk)])


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def awaiting_my_decision(request):
    return Response([payloads.permission_request(r) for r in workflow.awaiting_decision(request.user)])


@api_view(['GET'])
@permission_classes([IsAuthenticated, CanView])
def request_stats(request):
    return Response(workflow.stats())


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def request_detail(request, pk: int):
    if request.method == 'GET':
        req = workflow.get_request(pk)
        approver_ids = {a.user_id for a in req.approvers.all()}
        if req.requester_id != request.user.pk and request.user.pk not in approver_ids:
            check(request, *VIEW_CODES)
        return Response(payloads.permission_request(req))
    if request.method == 'DELETE':
        check(request, 'delete_permission_requests', 'manage_permission_workflows')
        return Response(workflow.delete(pk))
    s = PermissionRequestUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return Response(payloads.permission_request(workflow.update_request(pk, actor=request.user, **s.validated_data)))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def request_approve(request, pk: int):
    s = DecisionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = workflow.decide(pk, request.user, approve=True, comments=s.validated_data['comments'])
    return Response(payloads.permission_request(req))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def request_reject(request, pk: int):
    s = DecisionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    req = workflow.decide(pk, request.user, approve=False, comments=s.validated_data['comments'])
    return Response(payloads.permission_request(req))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def request_cancel(request, pk: int):
    return Response(payloads.permission_request(workflow.cancel(pk, request.user)))
