"""
URL configuration for the authorization service.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # Authentication endpoints
    path('v1/auth/', include('apps.authz.urls_auth')),  # login

    # Authorization endpoints
    path('v1/authz/', include('apps.authz.urls')),  # resolution, changes, templates, company modules, audit
]
