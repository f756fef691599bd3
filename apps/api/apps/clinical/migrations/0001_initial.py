# Generated migration for clinical app: session-accounting engine tables

import uuid
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


STATUS_CHOICES = [
    ('scheduled', 'Scheduled'),
    ('confirmed', 'Confirmed'),
    ('in_progress', 'In Progress'),
    ('completed', 'Completed'),
    ('cancelled', 'Cancelled'),
    ('no_show', 'No Show'),
    ('no_show_rescheduled', 'No Show (to reschedule)'),
    ('no_show_session_lost', 'No Show (session lost)'),
    ('rescheduled', 'Rescheduled'),
    ('discharged', 'Discharged'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('authz', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Patient',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(max_length=100)),
                ('document_number', models.CharField(blank=True, max_length=50, null=True)),
                ('email', models.EmailField(blank=True, max_length=254, null=True)),
                ('phone', models.CharField(blank=True, max_length=50, null=True)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Patient',
                'verbose_name_plural': 'Patients',
                'db_table': 'patient',
                'indexes': [
                    models.Index(fields=['last_name', 'first_name'], name='idx_patient_name'),
                    models.Index(fields=['document_number'], name='idx_patient_document'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MedicalOrder',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('description', models.TextField(blank=True, default='')),
                ('order_type', models.CharField(blank=True, default='', max_length=50)),
                ('total_sessions', models.PositiveIntegerField()),
                ('sessions_used', models.PositiveIntegerField(default=0)),
                ('completed', models.BooleanField(default=False)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('early_discharge', models.BooleanField(default=False)),
                ('results', models.TextField(blank=True, default='')),
                ('row_version', models.IntegerField(default=1)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_medical_orders', to=settings.AUTH_USER_MODEL)),
                ('doctor', models.ForeignKey(blank=True, help_text='Prescribing doctor', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='prescribed_orders', to='authz.doctor')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='medical_orders', to='clinical.patient')),
            ],
            options={
                'verbose_name': 'Medical Order',
                'verbose_name_plural': 'Medical Orders',
                'db_table': 'medical_order',
                'indexes': [
                    models.Index(fields=['patient', 'completed'], name='idx_order_patient_open'),
                    models.Index(fields=['created_at'], name='idx_order_created'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(total_sessions__gte=1), name='chk_order_total_sessions_positive'),
                    models.CheckConstraint(condition=models.Q(sessions_used__lte=models.F('total_sessions')), name='chk_order_sessions_within_pool'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Appointment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('appointment_date', models.DateField()),
                ('appointment_time', models.TimeField()),
                ('duration_minutes', models.PositiveIntegerField(default=30)),
                ('status', models.CharField(choices=STATUS_CHOICES, default='scheduled', max_length=30)),
                ('reason', models.TextField(blank=True, default='')),
                ('notes', models.TextField(blank=True, default='')),
                ('no_show_reason', models.TextField(blank=True, null=True)),
                ('session_deducted', models.BooleanField(default=False)),
                ('pardoned_at', models.DateTimeField(blank=True, null=True)),
                ('pardon_reason', models.TextField(blank=True, null=True)),
                ('rescheduled_at', models.DateTimeField(blank=True, null=True)),
                ('reschedule_reason', models.TextField(blank=True, null=True)),
                ('row_version', models.IntegerField(default=1)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_appointments', to=settings.AUTH_USER_MODEL)),
                ('doctor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='appointments', to='authz.doctor')),
                ('medical_order', models.ForeignKey(blank=True, help_text='Order the booking was made against', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='appointments', to='clinical.medicalorder')),
                ('pardoned_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='pardoned_appointments', to=settings.AUTH_USER_MODEL)),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='appointments', to='clinical.patient')),
                ('rescheduled_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='rescheduled_appointments', to=settings.AUTH_USER_MODEL)),
                ('rescheduled_from', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='rescheduled_to', to='clinical.appointment')),
                ('session_order', models.ForeignKey(blank=True, help_text='Order actually debited for this appointment', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='debited_appointments', to='clinical.medicalorder')),
            ],
            options={
                'verbose_name': 'Appointment',
                'verbose_name_plural': 'Appointments',
                'db_table': 'appointment',
                'indexes': [
                    models.Index(fields=['patient', 'status'], name='idx_appointment_patient_st'),
                    models.Index(fields=['doctor', 'appointment_date', 'appointment_time'], name='idx_appointment_slot'),
                    models.Index(fields=['appointment_date'], name='idx_appointment_date'),
                    models.Index(fields=['status'], name='idx_appointment_status'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AppointmentStatusHistory',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('old_status', models.CharField(blank=True, choices=STATUS_CHOICES, max_length=30, null=True)),
                ('new_status', models.CharField(choices=STATUS_CHOICES, max_length=30)),
                ('action_type', models.CharField(choices=[('status_change', 'Status change'), ('reschedule', 'Reschedule'), ('revert', 'Revert'), ('reassign_order', 'Order reassignment')], default='status_change', max_length=20)),
                ('reason', models.TextField(blank=True, null=True)),
                ('changed_at', models.DateTimeField()),
                ('reverted_at', models.DateTimeField(blank=True, null=True)),
                ('revert_reason', models.TextField(blank=True, null=True)),
                ('appointment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='status_history', to='clinical.appointment')),
                ('changed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='appointment_status_changes', to=settings.AUTH_USER_MODEL)),
                ('reverted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reverted_status_changes', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Appointment Status History',
                'verbose_name_plural': 'Appointment Status History',
                'db_table': 'appointment_status_history',
                'ordering': ['-changed_at'],
                'indexes': [
                    models.Index(fields=['appointment', 'changed_at'], name='idx_status_hist_appt'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UnifiedMedicalHistory',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('template_data', models.JSONField(blank=True, default=dict)),
                ('final_summary_file', models.FileField(blank=True, null=True, upload_to='final_summaries/%Y/%m/')),
                ('row_version', models.IntegerField(default=1)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('medical_order', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='unified_history', to='clinical.medicalorder')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='medical_histories', to='clinical.patient')),
            ],
            options={
                'verbose_name': 'Unified Medical History',
                'verbose_name_plural': 'Unified Medical Histories',
                'db_table': 'unified_medical_history',
            },
        ),
        migrations.CreateModel(
            name='MedicalHistoryEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('professional_name', models.CharField(max_length=255)),
                ('appointment_date', models.DateField()),
                ('observations', models.TextField(blank=True, null=True)),
                ('evolution', models.TextField(blank=True, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('appointment', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='history_entry', to='clinical.appointment')),
                ('doctor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='history_entries', to='authz.doctor')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='history_entries', to='clinical.patient')),
                ('unified_history', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='entries', to='clinical.unifiedmedicalhistory')),
            ],
            options={
                'verbose_name': 'Medical History Entry',
                'verbose_name_plural': 'Medical History Entries',
                'db_table': 'medical_history_entry',
                'ordering': ['appointment_date', 'created_at'],
                'indexes': [
                    models.Index(fields=['patient', 'appointment_date'], name='idx_hist_entry_patient'),
                ],
            },
        ),
        migrations.CreateModel(
            name='NoShowReset',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('reason', models.TextField()),
                ('appointments_affected', models.PositiveIntegerField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='no_show_resets', to='clinical.patient')),
                ('reset_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='no_show_resets', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'No-show Reset',
                'verbose_name_plural': 'No-show Resets',
                'db_table': 'patient_noshow_reset',
                'ordering': ['-created_at'],
            },
        ),
    ]
