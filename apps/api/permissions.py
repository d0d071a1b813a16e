from rest_framework.authentication import BaseAuthentication
from rest_framework.permissions import BasePermission
from rest_framework.exceptions import AuthenticationFailed
from django.utils import timezone
from apps.core.models import StaffToken


class StaffUser:
    """Request user for an authenticated scanner device"""

    is_authenticated = True
    is_anonymous = False

    def __init__(self, staff_token):
        self.staff_token = staff_token
        self.mess = staff_token.mess
        self.pk = None

    def __str__(self):
        return f"staff:{self.staff_token.label}"


class StaffTokenAuthentication(BaseAuthentication):
    """Bearer authentication for mess scanner devices"""

    keyword = 'Bearer'

    def authenticate(self, request):
        auth_header = request.META.get('HTTP_AUTHORIZATION')
        if not auth_header or not auth_header.startswith(f'{self.keyword} '):
            return None

        token = auth_header.split(' ', 1)[1].strip()

        try:
            staff_token = StaffToken.objects.select_related('mess').get(
                token_hash=StaffToken.hash_token(token),
                active=True
            )
        except StaffToken.DoesNotExist:
            raise AuthenticationFailed('Invalid token')

        if staff_token.expires_at and timezone.now() > staff_token.expires_at:
            raise AuthenticationFailed('Token expired')

        return (StaffUser(staff_token), staff_token)

    def authenticate_header(self, request):
        return self.keyword


class IsStaffUser(BasePermission):
    """Permission class for scanner devices"""

    def has_permission(self, request, view):
        return isinstance(request.user, StaffUser)


class IsSubscriber(BasePermission):
    """Permission class for signed-in subscribers"""

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and not isinstance(user, StaffUser))
