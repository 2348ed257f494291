import pytest
from pytest_factoryboy import register
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from payments.tests.factory import (
    UserFactory, StudentProfileFactory, CouponsFactory, PaymentIntentFactory,
)
from payments.tests.utils import FakeGateway, WEBHOOK_SECRET

register(UserFactory)
register(StudentProfileFactory)
register(CouponsFactory)
register(PaymentIntentFactory)



@pytest.fixture(autouse=True)
def payment_settings(settings):
    settings.RAZORPAY_KEY_ID = "rzp_test_key"
    settings.RAZORPAY_KEY_SECRET = "rzp_test_secret"
    settings.RAZORPAY_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.COURSE_PRICE = 999
    settings.COURSE_CURRENCY = "INR"
    settings.COHORT_DURATION_DAYS = 21
    settings.WEBHOOK_HEURISTIC_MATCHING = True
    settings.WEBHOOK_MATCH_WINDOW_HOURS = 24
    settings.WEBHOOK_AMOUNT_TOLERANCE = 0.01
    settings.REFERRAL_POINTS_PAID = 100
    settings.REFERRAL_POINTS_FREE = 50
    return settings


@pytest.fixture
def gateway():
    return FakeGateway()


def authenticate(client, user):
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def student(user_factory, student_profile_factory):
    """A user with a profile, email jane@x.com."""
    user = user_factory(username="jane", email="jane@x.com")
    student_profile_factory(user=user)
    return user


@pytest.fixture
def auth_client(api_client, student):
    return authenticate(api_client, student)
