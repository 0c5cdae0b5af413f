from django.urls import re_path
from . import views

urlpatterns = [
    re_path(r'^api/user/sensitive-data/?$', views.sensitive_data, name='sensitive_data'),
]
