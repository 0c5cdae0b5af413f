"""
URL configuration for the sensitive_vault project.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('', include('core.urls')),
    path('', include('vault.urls')),
    path('', include('accounts.urls')),
    path('', include('django_prometheus.urls')),  # /metrics endpoint
    path('accounts/', include('allauth.urls')),  # allauth authentication URLs
]
