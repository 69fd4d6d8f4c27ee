# users/urls.py
from django.urls import path

from . import views

urlpatterns = [
    path('register/', views.RegistrationView.as_view(), name='api-register'),
    path('token/', views.CustomObtainAuthToken.as_view(), name='api-token'),
    path('me/', views.MeView.as_view(), name='api-me'),
]
