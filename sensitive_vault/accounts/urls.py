from django.urls import path, re_path
from django.views.generic import RedirectView

from . import views

urlpatterns = [
    path('auth/signin/', RedirectView.as_view(pattern_name='account_login', query_string=True), name='signin'),
    path('auth/signout/', views.signout_view, name='signout'),
    re_path(r'^api/auth/session/?$', views.session_view, name='session'),
]
