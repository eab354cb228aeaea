from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from services.exceptions import AuthorizationError, NotFoundError, ValidationError
from services.matching import MatchCriteria, get_matching_engine
from services.offer_management import get_offer_manager
from services import request_management
from .models import DeliveryRequest
from .permissions import IsCustomer, IsTraveler
from .serializers import (
    DeliveryRequestSerializer,
    DeliveryRequestCancelSerializer,
    DeliveryOfferSerializer,
    DeliverySerializer,
    OfferCreateSerializer,
    OfferUpdateSerializer,
    OfferAcceptSerializer,
    OfferDeclineSerializer,
)


def _ensure_owner(request_id, user):
    owner_id = DeliveryRequest.objects.filter(pk=request_id).values_list('customer_id', flat=True).first()
    if owner_id is None:
        raise NotFoundError("Delivery request not found")
    if owner_id != user.id:
        raise AuthorizationError("You can only access your own delivery requests")


def _validated(serializer_class, data, **kwargs):
    serializer = serializer_class(data=data, **kwargs)
    if not serializer.is_valid():
        raise ValidationError("Invalid request data", details=serializer.errors)
    return serializer.validated_data


def _require_role(user, role):
    if getattr(user, 'role', None) != role:
        raise AuthorizationError(f"Only {role}s can perform this action")


# ==================== Customer Request APIs ====================

@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def delivery_requests(request):
    """List the customer's delivery requests, or create a new one"""
    if request.method == 'POST':
        delivery_request = request_management.create_delivery_request(request.user, request.data)
        return Response({
            'success': True,
            'message': 'Delivery request created successfully',
            'data': DeliveryRequestSerializer(delivery_request).data,
        }, status=status.HTTP_201_CREATED)

    items, pagination = request_management.get_customer_requests(
        request.user,
        status=request.query_params.get('status'),
        page=request.query_params.get('page', 1),
        limit=request.query_params.get('limit', 20),
    )
    return Response({
        'success': True,
        'data': DeliveryRequestSerializer(items, many=True).data,
        'pagination': pagination,
    })


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated])
def delivery_request_detail(request, request_id: int):
    """Get one request (owner or open to travelers); the owner may update it"""
    if request.method == 'PATCH':
        _require_role(request.user, 'customer')
        delivery_request = request_management.update_delivery_request(request.user, request_id, request.data)
        return Response({
            'success': True,
            'message': 'Delivery request updated successfully',
            'data': DeliveryRequestSerializer(delivery_request).data,
        })

    data = request_management.get_delivery_request(request_id, user=request.user)
    return Response({'success': True, 'data': data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def cancel_delivery_request(request, request_id: int):
    """Cancel a request; all pending offers are declined"""
    data = _validated(DeliveryRequestCancelSerializer, request.data)
    delivery_request = request_management.cancel_delivery_request(
        request.user, request_id, reason=data.get('reason', ''),
    )
    return Response({
        'success': True,
        'message': 'Delivery request cancelled successfully',
        'data': DeliveryRequestSerializer(delivery_request).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def duplicate_delivery_request(request, request_id: int):
    """Create a new request from an existing one; the body overrides copied fields"""
    delivery_request = request_management.duplicate_delivery_request(request.user, request_id, request.data)
    return Response({
        'success': True,
        'message': 'Delivery request duplicated successfully',
        'data': DeliveryRequestSerializer(delivery_request).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCustomer])
def request_analytics(request, request_id: int):
    data = request_management.get_request_analytics(request.user, request_id)
    return Response({'success': True, 'data': data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def popular_routes(request):
    """Most requested routes (period: week, month or quarter; category; limit)"""
    params = request.query_params
    routes = request_management.get_popular_routes(
        period=params.get('period', 'month'),
        category=params.get('category'),
        limit=params.get('limit', 10),
    )
    return Response({'success': True, 'data': routes, 'count': len(routes)})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCustomer])
def find_matches(request, request_id: int):
    """Ranked candidate carriers for the customer's request"""
    _ensure_owner(request_id, request.user)
    criteria = MatchCriteria.from_params(request.query_params)
    result = get_matching_engine().find_matches(request_id, criteria)
    return Response({'success': True, 'data': result})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def request_offers(request, request_id: int):
    """Customer lists offers on their request; a traveler submits one"""
    manager = get_offer_manager()

    if request.method == 'POST':
        _require_role(request.user, 'traveler')
        data = _validated(OfferCreateSerializer, request.data)
        offer = manager.submit_offer(request.user, request_id, **data)
        return Response({
            'success': True,
            'message': 'Offer submitted successfully',
            'data': DeliveryOfferSerializer(offer).data,
        }, status=status.HTTP_201_CREATED)

    _require_role(request.user, 'customer')
    offers = manager.get_request_offers(request_id, customer=request.user)
    return Response({'success': True, 'data': offers, 'count': len(offers)})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsCustomer])
def request_offer_statistics(request, request_id: int):
    _ensure_owner(request_id, request.user)
    stats = get_offer_manager().get_offer_statistics(request_id=request_id)
    return Response({'success': True, 'data': stats})


# ==================== Customer Offer Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def accept_offer(request, offer_id: int):
    """Accept an offer; creates the Delivery and declines all other offers"""
    data = _validated(OfferAcceptSerializer, request.data)
    result = get_offer_manager().accept_offer(
        request.user, offer_id, special_requests=data.get('special_requests'),
    )
    return Response({
        'success': True,
        'message': 'Offer accepted successfully',
        'data': {
            'delivery': DeliverySerializer(result.delivery).data,
            'offer': DeliveryOfferSerializer(result.offer).data,
            'declined_offers': result.declined_offer_ids,
        },
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsCustomer])
def decline_offer(request, offer_id: int):
    data = _validated(OfferDeclineSerializer, request.data)
    offer = get_offer_manager().decline_offer(request.user, offer_id, reason=data.get('reason'))
    return Response({
        'success': True,
        'message': 'Offer declined',
        'data': DeliveryOfferSerializer(offer).data,
    })


# ==================== Traveler APIs ====================

@api_view(['GET'])
@permission_classes([IsAuthenticated, IsTraveler])
def search_requests(request):
    """Open delivery requests near a point (lat, lng, radius km, category)"""
    params = request.query_params
    try:
        latitude = float(params['lat'])
        longitude = float(params['lng'])
        radius = float(params.get('radius', 25))
    except (KeyError, TypeError, ValueError):
        raise ValidationError("lat and lng are required numeric parameters")

    results = request_management.search_delivery_requests(
        request.user, latitude, longitude, radius_km=radius, category=params.get('category'),
    )
    data = []
    for item in results:
        entry = dict(DeliveryRequestSerializer(item).data)
        entry['distance_km'] = item.distance_km
        data.append(entry)
    return Response({'success': True, 'data': data, 'count': len(data)})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsTraveler])
def update_offer(request, offer_id: int):
    data = _validated(OfferUpdateSerializer, request.data)
    offer = get_offer_manager().update_offer(request.user, offer_id, **data)
    return Response({
        'success': True,
        'message': 'Offer updated successfully',
        'data': DeliveryOfferSerializer(offer).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsTraveler])
def withdraw_offer(request, offer_id: int):
    offer = get_offer_manager().withdraw_offer(request.user, offer_id)
    return Response({
        'success': True,
        'message': 'Offer withdrawn',
        'data': DeliveryOfferSerializer(offer).data,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsTraveler])
def my_offers(request):
    """Traveler's own offers, newest first"""
    offers, pagination = get_offer_manager().get_traveler_offers(
        request.user,
        status=request.query_params.get('status'),
        page=request.query_params.get('page', 1),
        limit=request.query_params.get('limit', 20),
    )
    return Response({
        'success': True,
        'data': DeliveryOfferSerializer(offers, many=True).data,
        'pagination': pagination,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsTraveler])
def my_offer_statistics(request):
    stats = get_offer_manager().get_offer_statistics(traveler=request.user)
    return Response({'success': True, 'data': stats})
