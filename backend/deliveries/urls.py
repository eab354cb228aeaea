from django.urls import path
from . import views

app_name = 'deliveries'

urlpatterns = [
    # Customer request APIs
    path('requests/', views.delivery_requests, name='requests'),
    path('requests/search/', views.search_requests, name='search-requests'),
    path('requests/popular-routes/', views.popular_routes, name='popular-routes'),
    path('requests/<int:request_id>/', views.delivery_request_detail, name='request-detail'),
    path('requests/<int:request_id>/cancel/', views.cancel_delivery_request, name='cancel-request'),
    path('requests/<int:request_id>/duplicate/', views.duplicate_delivery_request, name='duplicate-request'),
    path('requests/<int:request_id>/analytics/', views.request_analytics, name='request-analytics'),
    path('requests/<int:request_id>/matches/', views.find_matches, name='find-matches'),
    path('requests/<int:request_id>/offers/', views.request_offers, name='request-offers'),
    path('requests/<int:request_id>/offers/statistics/', views.request_offer_statistics, name='request-offer-statistics'),

    # Offer actions
    path('offers/mine/', views.my_offers, name='my-offers'),
    path('offers/mine/statistics/', views.my_offer_statistics, name='my-offer-statistics'),
    path('offers/<int:offer_id>/', views.update_offer, name='update-offer'),
    path('offers/<int:offer_id>/accept/', views.accept_offer, name='accept-offer'),
    path('offers/<int:offer_id>/decline/', views.decline_offer, name='decline-offer'),
    path('offers/<int:offer_id>/withdraw/', views.withdraw_offer, name='withdraw-offer'),
]
