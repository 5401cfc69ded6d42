import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Patient(models.Model):

    class Gender(models.TextChoices):
        MALE = 'MALE', 'Masculino'
        FEMALE = 'FEMALE', 'Feminino'
        NON_BINARY = 'NON_BINARY', 'Não binário'

    class Religion(models.TextChoices):
        ATHEIST = 'ATHEIST', 'Ateu'
        BUDDHISM = 'BUDDHISM', 'Budismo'
        CANDOMBLE = 'CANDOMBLE', 'Candomblé'
        CATHOLIC = 'CATHOLIC', 'Católico'
        SPIRITIST = 'SPIRITIST', 'Espírita'
        SPIRITUALIST = 'SPIRITUALIST', 'Espiritualista'
        EVANGELICAL = 'EVANGELICAL', 'Evangélico'
        HINDUISM = 'HINDUISM', 'Hinduísmo'
        ISLAM = 'ISLAM', 'Islamismo'
        JUDAISM = 'JUDAISM', 'Judaísmo'
        MORMON = 'MORMON', 'Mórmon'
        NO_RELIGION = 'NO_RELIGION', 'Sem religião'
        JEHOVAH_WITNESS = 'JEHOVAH_WITNESS', 'Testemunha de Jeová'
        UMBANDA = 'UMBANDA', 'Umbanda'

    class Frequency(models.TextChoices):
        WEEKLY = 'WEEKLY', 'Semanal'
        BIWEEKLY = 'BIWEEKLY', 'Quinzenal'
        MONTHLY = 'MONTHLY', 'Mensal'
        SPORADIC = 'SPORADIC', 'Esporádica'

    class Weekday(models.TextChoices):
        MONDAY = 'MONDAY', 'Segunda-feira'
        TUESDAY = 'TUESDAY', 'Terça-feira'
        WEDNESDAY = 'WEDNESDAY', 'Quarta-feira'
        THURSDAY = 'THURSDAY', 'Quinta-feira'
        FRIDAY = 'FRIDAY', 'Sexta-feira'
        SATURDAY = 'SATURDAY', 'Sábado'
        SUNDAY = 'SUNDAY', 'Domingo'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    profile_photo = models.TextField(blank=True, null=True)
    birth_date = models.DateField()
    gender = models.CharField(max_length=20, choices=Gender.choices)
    cpf = models.CharField(max_length=14, blank=True, null=True)
    rg = models.CharField(max_length=20, blank=True, null=True)
    religion = models.CharField(max_length=20, choices=Religion.choices)
    legal_guardian = models.CharField(max_length=255, blank=True, null=True)
    legal_guardian_email = models.CharField(max_length=255, blank=True, null=True)
    legal_guardian_cpf = models.CharField(max_length=14, blank=True, null=True)
    phone1 = models.CharField(max_length=20)
    phone2 = models.CharField(max_length=20, blank=True, null=True)
    email = models.CharField(max_length=255, blank=True, null=True)
    has_therapy_history = models.BooleanField(default=False)
    therapy_history_details = models.TextField(blank=True, null=True)
    takes_medication = models.BooleanField(default=False)
    medication_since = models.CharField(max_length=100, blank=True, null=True)
    medication_names = models.TextField(blank=True, null=True)
    has_hospitalization = models.BooleanField(default=False)
    hospitalization_date = models.CharField(max_length=100, blank=True, null=True)
    hospitalization_reason = models.TextField(blank=True, null=True)
    consultation_price = models.DecimalField(max_digits=7, decimal_places=2, blank=True, null=True)
    consultation_frequency = models.CharField(
        max_length=10, choices=Frequency.choices, blank=True, null=True,
    )
    consultation_day = models.CharField(
        max_length=10, choices=Weekday.choices, blank=True, null=True,
    )
    credits = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'
        indexes = [
            models.Index(fields=['name'], name='patient_name_idx'),
            models.Index(fields=['birth_date'], name='patient_birth_date_idx'),
            models.Index(fields=['credits'], name='patient_credits_idx'),
            models.Index(fields=['created_at'], name='patient_created_at_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(consultation_price__isnull=True) | Q(consultation_price__gt=0),
                name='patient_price_positive',
            ),
        ]


class Consultation(models.Model):

    class Status(models.TextChoices):
        OPEN = 'OPEN', 'Em aberto'
        FINALIZED = 'FINALIZED', 'Finalizada'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='consultations')
    started_at = models.DateTimeField(default=timezone.now)
    finished_at = models.DateTimeField(blank=True, null=True)
    paid_at = models.DateTimeField(blank=True, null=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.OPEN)
    content = models.TextField(blank=True, default='')
    notes = models.TextField(blank=True, default='')
    price = models.DecimalField(max_digits=7, decimal_places=2)
    paid = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'consultations'
        indexes = [
            models.Index(fields=['patient', 'status'], name='consult_patient_status_idx'),
            models.Index(fields=['status', 'started_at'], name='consult_status_started_idx'),
            models.Index(fields=['paid'], name='consult_paid_idx'),
            models.Index(fields=['started_at'], name='consult_started_at_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['patient'],
                condition=Q(status='OPEN'),
                name='unique_open_consultation_per_patient',
            ),
            models.CheckConstraint(condition=Q(price__gt=0), name='consultation_price_positive'),
        ]
