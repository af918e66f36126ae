"""
Authentication REST API views.
"""
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.logging import SecurityLogger
from apps.authz.audit import origin_from_request
from apps.authz.serializers import LoginSerializer
from apps.authz.services import AuthService


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password.

Returns a JWT bearer token for API authentication. Successful and failed
attempts are recorded as audit events; repeated failures raise the risk
score of later events for the same account.

**No authentication required** - this is a public endpoint.

**Rate limits**:
- 5 requests/minute per IP address
- 10 requests/hour per email address
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Login Request',
            value={
                'email': 'user@example.com',
                'password': 'SecurePass123!'
            },
            request_only=True
        ),
        OpenApiExample(
            'Invalid Credentials',
            value={
                'error': 'Invalid email or password'
            },
            response_only=True,
            status_codes=['401']
        ),
        OpenApiExample(
            'Rate Limit Exceeded',
            value={
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED'
            },
            response_only=True,
            status_codes=['429']
        )
    ]
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
@method_decorator(ratelimit(key='post:email', rate='10/h', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """
    POST /v1/auth/login

    Authenticate user and return JWT token.

    No authentication required.
    Rate limited to:
    - 5 requests per minute per IP address
    - 10 requests per hour per email address
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        """Login user."""
        if getattr(request, 'limited', False):
            ip_address = request.META.get('REMOTE_ADDR', 'unknown')
            email = request.data.get('email', 'unknown') if hasattr(request, 'data') else 'unknown'

            SecurityLogger.log_rate_limit_exceeded(
                endpoint='/v1/auth/login',
                ip_address=ip_address,
                user_email=email,
                limit='5/min per IP or 10/hour per email'
            )

            retry_after = 60
            response = Response(
                {
                    'error': 'Rate limit exceeded. Please try again later.',
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'retry_after': retry_after
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS
            )
            response['Retry-After'] = str(retry_after)
            return response

        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {
                    'error': 'Validation error',
                    'details': serializer.errors
                },
                status=status.HTTP_400_BAD_REQUEST
            )

        result = AuthService.login(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
            origin=origin_from_request(request),
        )

        if not result:
            return Response(
                {
                    'error': 'Invalid email or password'
                },
                status=status.HTTP_401_UNAUTHORIZED
            )

        user = result['user']
        return Response(
            {
                'user': {
                    'id': str(user.id),
                    'email': user.email,
                    'full_name': user.get_full_name(),
                    'role': user.role,
                    'company_id': str(user.company_id) if user.company_id else None,
                },
                'token': result['token'],
                'message': 'Login successful'
            },
            status=status.HTTP_200_OK
        )
