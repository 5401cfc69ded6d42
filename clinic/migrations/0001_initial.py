# Initial schema for patients and consultations

import uuid
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


GENDER_CHOICES = [
    ('MALE', 'Masculino'),
    ('FEMALE', 'Feminino'),
    ('NON_BINARY', 'Não binário'),
]

RELIGION_CHOICES = [
    ('ATHEIST', 'Ateu'),
    ('BUDDHISM', 'Budismo'),
    ('CANDOMBLE', 'Candomblé'),
    ('CATHOLIC', 'Católico'),
    ('SPIRITIST', 'Espírita'),
    ('SPIRITUALIST', 'Espiritualista'),
    ('EVANGELICAL', 'Evangélico'),
    ('HINDUISM', 'Hinduísmo'),
    ('ISLAM', 'Islamismo'),
    ('JUDAISM', 'Judaísmo'),
    ('MORMON', 'Mórmon'),
    ('NO_RELIGION', 'Sem religião'),
    ('JEHOVAH_WITNESS', 'Testemunha de Jeová'),
    ('UMBANDA', 'Umbanda'),
]

FREQUENCY_CHOICES = [
    ('WEEKLY', 'Semanal'),
    ('BIWEEKLY', 'Quinzenal'),
    ('MONTHLY', 'Mensal'),
    ('SPORADIC', 'Esporádica'),
]

WEEKDAY_CHOICES = [
    ('MONDAY', 'Segunda-feira'),
    ('TUESDAY', 'Terça-feira'),
    ('WEDNESDAY', 'Quarta-feira'),
    ('THURSDAY', 'Quinta-feira'),
    ('FRIDAY', 'Sexta-feira'),
    ('SATURDAY', 'Sábado'),
    ('SUNDAY', 'Domingo'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Patient',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=255)),
                ('profile_photo', models.TextField(blank=True, null=True)),
                ('birth_date', models.DateField()),
                ('gender', models.CharField(choices=GENDER_CHOICES, max_length=20)),
                ('cpf', models.CharField(blank=True, max_length=14, null=True)),
                ('rg', models.CharField(blank=True, max_length=20, null=True)),
                ('religion', models.CharField(choices=RELIGION_CHOICES, max_length=20)),
                ('legal_guardian', models.CharField(blank=True, max_length=255, null=True)),
                ('legal_guardian_email', models.CharField(blank=True, max_length=255, null=True)),
                ('legal_guardian_cpf', models.CharField(blank=True, max_length=14, null=True)),
                ('phone1', models.CharField(max_length=20)),
                ('phone2', models.CharField(blank=True, max_length=20, null=True)),
                ('email', models.CharField(blank=True, max_length=255, null=True)),
                ('has_therapy_history', models.BooleanField(default=False)),
                ('therapy_history_details', models.TextField(blank=True, null=True)),
                ('takes_medication', models.BooleanField(default=False)),
                ('medication_since', models.CharField(blank=True, max_length=100, null=True)),
                ('medication_names', models.TextField(blank=True, null=True)),
                ('has_hospitalization', models.BooleanField(default=False)),
                ('hospitalization_date', models.CharField(blank=True, max_length=100, null=True)),
                ('hospitalization_reason', models.TextField(blank=True, null=True)),
                ('consultation_price', models.DecimalField(blank=True, decimal_places=2, max_digits=7, null=True)),
                ('consultation_frequency', models.CharField(blank=True, choices=FREQUENCY_CHOICES, max_length=10, null=True)),
                ('consultation_day', models.CharField(blank=True, choices=WEEKDAY_CHOICES, max_length=10, null=True)),
                ('credits', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'patients',
            },
        ),
        migrations.CreateModel(
            name='Consultation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('started_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('finished_at', models.DateTimeField(blank=True, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('status', models.CharField(choices=[('OPEN', 'Em aberto'), ('FINALIZED', 'Finalizada')], default='OPEN', max_length=10)),
                ('content', models.TextField(blank=True, default='')),
                ('notes', models.TextField(blank=True, default='')),
                ('price', models.DecimalField(decimal_places=2, max_digits=7)),
                ('paid', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='consultations', to='clinic.patient')),
            ],
            options={
                'db_table': 'consultations',
            },
        ),
        migrations.AddIndex(
            model_name='patient',
            index=models.Index(fields=['name'], name='patient_name_idx'),
        ),
        migrations.AddIndex(
            model_name='patient',
            index=models.Index(fields=['birth_date'], name='patient_birth_date_idx'),
        ),
        migrations.AddIndex(
            model_name='patient',
            index=models.Index(fields=['credits'], name='patient_credits_idx'),
        ),
        migrations.AddIndex(
            model_name='patient',
            index=models.Index(fields=['created_at'], name='patient_created_at_idx'),
        ),
        migrations.AddIndex(
            model_name='consultation',
            index=models.Index(fields=['patient', 'status'], name='consult_patient_status_idx'),
        ),
        migrations.AddIndex(
            model_name='consultation',
            index=models.Index(fields=['status', 'started_at'], name='consult_status_started_idx'),
        ),
        migrations.AddIndex(
            model_name='consultation',
            index=models.Index(fields=['paid'], name='consult_paid_idx'),
        ),
        migrations.AddIndex(
            model_name='consultation',
            index=models.Index(fields=['started_at'], name='consult_started_at_idx'),
        ),
        migrations.AddConstraint(
            model_name='consultation',
            constraint=models.UniqueConstraint(
                condition=models.Q(('status', 'OPEN')),
                fields=('patient',),
                name='unique_open_consultation_per_patient',
            ),
        ),
        migrations.AddConstraint(
            model_name='consultation',
            constraint=models.CheckConstraint(
                condition=models.Q(('price__gt', 0)),
                name='consultation_price_positive',
            ),
        ),
        migrations.AddConstraint(
            model_name='patient',
            constraint=models.CheckConstraint(
                condition=models.Q(('consultation_price__isnull', True), ('consultation_price__gt', 0), _connector='OR'),
                name='patient_price_positive',
            ),
        ),
    ]
