# URLs for api app
from django.urls import path
from .views import (
	cancel_meal_view,
	confirm_meal_view,
	daily_meal_tokens,
	issue_meal_token,
	my_user_token,
	redeem,
	scanner_scan,
)

urlpatterns = [
	path('tokens/meal', issue_meal_token, name='issue_meal_token'),
	path('tokens/daily', daily_meal_tokens, name='daily_meal_tokens'),
	path('tokens/me', my_user_token, name='my_user_token'),
	path('redeem', redeem, name='redeem'),
	path('scanner/scan', scanner_scan, name='scanner_scan'),
	path('confirmations', confirm_meal_view, name='confirm_meal'),
	path('confirmations/cancel', cancel_meal_view, name='cancel_meal'),
]
