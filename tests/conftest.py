"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
Redis is replaced by fakeredis for every test.
"""
import uuid
from decimal import Decimal

import factory
import fakeredis
import pytest
from django.core.cache import cache
from django.test import Client

from laboratory import auth
from laboratory.models import (
    Bill,
    LabReport,
    LabTest,
    Laboratory,
    Notification,
    Order,
    OrderItem,
    Patient,
    SupportTicket,
    TestRequest,
    WalletTransaction,
    WithdrawalRequest,
)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class LaboratoryFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Laboratory

    lab_name = factory.Sequence(lambda n: f'City Diagnostics {n}')
    owner_name = 'Meera Iyer'
    email = factory.Sequence(lambda n: f'lab{n}@example.com')
    phone = factory.Sequence(lambda n: f'98{n:08d}')
    license_number = factory.Sequence(lambda n: f'LIC-{1000 + n}')
    address = factory.LazyFunction(lambda: {'line1': '12 MG Road', 'city': 'Pune'})
    status = 'approved'
    is_active = True


class PatientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Patient

    first_name = 'Asha'
    last_name = 'Rao'
    phone = factory.Sequence(lambda n: f'91{n:08d}')
    email = factory.Sequence(lambda n: f'patient{n}@example.com')


class LabTestFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = LabTest

    laboratory = factory.SubFactory(LaboratoryFactory)
    name = 'Complete Blood Count'
    price = Decimal('350.00')
    category = 'Hematology'


class BookingRequestFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = TestRequest
        skip_postgeneration_save = True

    patient = factory.SubFactory(PatientFactory)
    request_type = 'book_test_visit'
    status = 'accepted'
    visit_type = 'lab'
    items = factory.LazyFunction(lambda: [{'name': 'CBC', 'price': 350.0, 'test_id': '', 'laboratory_id': ''}])

    @factory.post_generation
    def laboratories(self, create, extracted, **kwargs):
        if create and extracted:
            self.laboratories.set(extracted)


class OrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Order

    patient = factory.SubFactory(PatientFactory)
    laboratory = factory.SubFactory(LaboratoryFactory)
    total_amount = Decimal('500.00')
    status = 'pending'
    delivery_option = 'pickup'
    payment_status = 'pending'


class OrderItemFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = OrderItem

    order = factory.SubFactory(OrderFactory)
    name = 'Lipid Profile'
    quantity = 1
    price = Decimal('500.00')
    total = Decimal('500.00')


class BillFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Bill

    request = factory.SubFactory(BookingRequestFactory)
    laboratory = factory.SubFactory(LaboratoryFactory)
    items = factory.LazyFunction(lambda: [{'name': 'CBC', 'price': 350.0}])
    test_amount = Decimal('350.00')
    delivery_charge = Decimal('0.00')
    additional_charges = Decimal('0.00')
    total_amount = Decimal('350.00')


class LabReportFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = LabReport

    order = factory.SubFactory(OrderFactory)
    patient = factory.LazyAttribute(lambda o: o.order.patient)
    laboratory = factory.LazyAttribute(lambda o: o.order.laboratory)
    test_name = 'Complete Blood Count'
    results = factory.LazyFunction(lambda: [
        {'parameter': 'Hemoglobin', 'value': '13.5', 'unit': 'g/dL', 'normal_range': '12-16', 'status': 'normal'},
    ])
    status = 'pending'


class WalletTransactionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WalletTransaction

    laboratory = factory.SubFactory(LaboratoryFactory)
    type = 'earning'
    amount = Decimal('400.00')
    status = 'completed'


class WithdrawalRequestFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WithdrawalRequest

    laboratory = factory.SubFactory(LaboratoryFactory)
    amount = Decimal('100.00')
    payout_method = factory.LazyFunction(lambda: {'type': 'upi', 'details': {'upi_id': 'lab@upi'}})
    status = 'pending'


class NotificationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Notification

    recipient_type = 'laboratory'
    recipient_id = factory.LazyFunction(uuid.uuid4)
    event_type = 'order_status'
    title = 'Order update'
    message = 'Something happened'


class SupportTicketFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = SupportTicket

    laboratory = factory.SubFactory(LaboratoryFactory)
    subject = 'Payout delayed'
    message = 'Withdrawal still pending after a week.'
    priority = 'medium'
    status = 'open'


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    monkeypatch.setattr('laboratory.redis_client.get_redis_client', lambda: client)
    return client


@pytest.fixture(autouse=True)
def clear_throttle_cache():
    """Request throttles count in the default cache; start every test from zero."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def media_root(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path / 'media')
    return settings.MEDIA_ROOT


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """Django test client for integration tests."""
    return Client()


@pytest.fixture
def laboratory(db):
    return LaboratoryFactory()


@pytest.fixture
def tokens(laboratory):
    return auth.issue_token_pair(laboratory)


@pytest.fixture
def auth_headers(tokens):
    return {'HTTP_AUTHORIZATION': f"Bearer {tokens['access_token']}"}


@pytest.fixture
def booking_payload(laboratory):
    """admin_response body for POST /api/laboratory/request-orders/intake."""
    return {
        'patientId': {'firstName': 'Asha', 'lastName': 'Rao', 'phone': '9876543210', 'email': 'asha@example.com'},
        'visitType': 'home',
        'patientAddress': {'line1': '4 Lake View', 'city': 'Pune'},
        'adminResponse': {
            'labs': [str(laboratory.id)],
            'tests': [
                {'labId': str(laboratory.id), 'testName': 'CBC', 'price': 350},
                {'labId': str(laboratory.id), 'testName': 'HbA1c', 'price': 450},
            ],
        },
    }
