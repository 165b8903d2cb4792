from django.urls import path

from . import views

urlpatterns = [
    path('api/status/', views.api_status, name='api_status'),
    path('api/history/', views.api_history, name='api_history'),
    path('api/predictions/', views.api_predictions, name='api_predictions'),
    path('api/accuracy/', views.api_accuracy, name='api_accuracy'),
    path('api/refresh/', views.api_refresh, name='api_refresh'),
    path('api/backfill/', views.api_backfill, name='api_backfill'),
    path('api/manual-result/', views.api_manual_result, name='api_manual_result'),
]
