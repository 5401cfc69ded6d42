"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
`storage` 参数化两个存储后端，service 测试在 Django ORM 和嵌入式 SQLite 上各跑一遍。
"""
import json
from datetime import date
from decimal import Decimal

import factory
import pytest
from django.test import Client

from clinic.models import Consultation, Patient
from clinic.storage.django_backend import DjangoStorage
from clinic.storage.sqlalchemy_backend import SqlAlchemyStorage, build_engine


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class PatientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Patient

    name = factory.Sequence(lambda n: f'Paciente {n:03d}')
    birth_date = date(1990, 5, 10)
    gender = Patient.Gender.FEMALE
    religion = Patient.Religion.CATHOLIC
    phone1 = '(11) 99999-0000'
    cpf = '123.456.789-00'
    consultation_price = Decimal('150.00')
    credits = 0


class ConsultationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Consultation

    patient = factory.SubFactory(PatientFactory)
    price = Decimal('150.00')
    status = Consultation.Status.OPEN
    paid = False


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def patient_data(**overrides):
    """存储层 create() 接受的患者字段。"""
    data = {
        'name': 'Maria Souza',
        'birth_date': date(1990, 5, 10),
        'gender': 'FEMALE',
        'religion': 'CATHOLIC',
        'phone1': '(11) 99999-0000',
        'cpf': '123.456.789-00',
        'has_therapy_history': False,
        'takes_medication': False,
        'has_hospitalization': False,
        'consultation_price': Decimal('150.00'),
        'credits': 0,
    }
    data.update(overrides)
    return data


def patient_payload(**overrides):
    """POST /api/patients/ 的 JSON body。"""
    payload = {
        'name': 'Ana Lima',
        'birth_date': '1988-02-14',
        'gender': 'FEMALE',
        'religion': 'SPIRITIST',
        'phone1': '(21) 98888-1234',
        'cpf': '987.654.321-00',
        'has_therapy_history': False,
        'takes_medication': False,
        'has_hospitalization': False,
        'consultation_price': '180.00',
        'credits': 2,
    }
    payload.update(overrides)
    return payload


def send_json(api_client, method, url, payload=None, **kwargs):
    """快捷方式：发 JSON 请求，返回 (status_code, body)。"""
    request = getattr(api_client, method)
    if payload is None:
        response = request(url, **kwargs)
    else:
        response = request(url, data=json.dumps(payload), content_type='application/json', **kwargs)
    return response.status_code, json.loads(response.content)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """Django test client for integration tests."""
    return Client()


@pytest.fixture(params=['django', 'sqlalchemy'])
def storage(request):
    """两个后端各一份干净的存储。"""
    if request.param == 'django':
        request.getfixturevalue('db')
        yield DjangoStorage()
        return

    # 每个测试一个新的内存库
    engine = build_engine('sqlite://')
    yield SqlAlchemyStorage(engine)
    engine.dispose()


@pytest.fixture
def make_patient(storage):
    def _make(**overrides):
        return storage.patients.create(patient_data(**overrides))

    return _make
