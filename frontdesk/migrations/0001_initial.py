from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import frontdesk.models


ROOM_TYPES = [('single', 'Single'), ('double', 'Double'), ('twin', 'Twin'), ('suite', 'Suite'), ('deluxe', 'Deluxe')]
PAYMENT_METHODS = [('cash', 'Cash'), ('card', 'Card'), ('transfer', 'Bank Transfer / QR')]
PAYMENT_STATUSES = [(0, 'Deposited'), (1, 'Unpaid'), (2, 'Paid')]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Customer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(blank=True, max_length=100)),
                ('email', models.EmailField(blank=True, max_length=254, null=True)),
                ('phone', models.CharField(blank=True, max_length=30, null=True)),
                ('document_id', models.CharField(blank=True, max_length=50, null=True, verbose_name='ID/Passport')),
            ],
        ),
        migrations.CreateModel(
            name='Room',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('number', models.CharField(max_length=10, unique=True)),
                ('type', models.CharField(choices=ROOM_TYPES, default='double', max_length=20)),
                ('price_per_night', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('status', models.CharField(choices=[('available', 'Available'), ('occupied', 'Occupied'), ('cleaning', 'Cleaning'), ('overdue', 'Overdue')], default='available', max_length=15)),
            ],
            options={
                'ordering': ['number'],
            },
        ),
        migrations.CreateModel(
            name='Service',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('unit_price', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('active', models.BooleanField(default=True)),
            ],
        ),
        migrations.CreateModel(
            name='Promotion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('discount_type', models.CharField(choices=[('percent', 'Percentage'), ('amount', 'Flat amount')], default='percent', max_length=10)),
                ('value', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('room_type', models.CharField(blank=True, choices=ROOM_TYPES, max_length=20, null=True)),
                ('start_date', models.DateField()),
                ('end_date', models.DateField()),
                ('active', models.BooleanField(default=True)),
                ('rooms', models.ManyToManyField(blank=True, related_name='promotions', to='frontdesk.room')),
            ],
            options={
                'ordering': ['start_date'],
            },
        ),
        migrations.CreateModel(
            name='Booking',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('check_in', models.DateField()),
                ('check_out', models.DateField()),
                ('status', models.IntegerField(choices=[(0, 'Cancelled'), (1, 'Pending confirmation'), (2, 'Confirmed'), (3, 'In use'), (4, 'Completed'), (5, 'Overdue')], default=1)),
                ('payment_status', models.IntegerField(choices=PAYMENT_STATUSES, default=1)),
                ('deposit', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('notes', models.TextField(blank=True, default='')),
                ('checkout_hour', models.PositiveSmallIntegerField(default=12)),
                ('fee_path', models.CharField(blank=True, choices=[('', 'None'), ('extension', 'Extension fee'), ('late', 'Late fee')], default='', max_length=10)),
                ('same_day_extended', models.BooleanField(default=False)),
                ('checked_in_at', models.DateTimeField(blank=True, null=True)),
                ('checked_out_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='bookings', to='frontdesk.customer')),
                ('room', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='bookings', to='frontdesk.room')),
            ],
            options={
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('check_in__lt', models.F('check_out'))), name='booking_check_in_before_check_out'),
                    models.CheckConstraint(condition=models.Q(('deposit__gte', 0)), name='booking_deposit_not_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Invoice',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('series', models.CharField(default=frontdesk.models.default_invoice_series, max_length=10)),
                ('number', models.PositiveIntegerField(blank=True, null=True)),
                ('issue_date', models.DateTimeField(auto_now_add=True)),
                ('payment_method', models.CharField(choices=PAYMENT_METHODS, default='cash', max_length=20)),
                ('vat_rate', models.DecimalField(decimal_places=2, default=Decimal('0.10'), max_digits=4)),
                ('paid_amount', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('refunded_amount', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('total', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('status', models.IntegerField(choices=PAYMENT_STATUSES, default=1)),
                ('locked', models.BooleanField(default=False)),
                ('notes', models.TextField(blank=True, default='')),
                ('booking', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='invoice', to='frontdesk.booking')),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='invoices', to='frontdesk.customer')),
            ],
            options={
                'ordering': ['-issue_date'],
                'constraints': [
                    models.UniqueConstraint(fields=('series', 'number'), name='uniq_invoice_series_number'),
                ],
            },
        ),
        migrations.CreateModel(
            name='RoomChargeLine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('nightly_rate', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('nights', models.PositiveIntegerField(default=1)),
                ('promotion_discount', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('line_total', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('invoice', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='room_lines', to='frontdesk.invoice')),
                ('promotion', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to='frontdesk.promotion')),
                ('room', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='charge_lines', to='frontdesk.room')),
            ],
            options={
                'ordering': ['id'],
            },
        ),
        migrations.CreateModel(
            name='ServiceChargeLine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('combo_code', models.CharField(blank=True, default='', max_length=30)),
                ('description', models.CharField(max_length=200)),
                ('quantity', models.DecimalField(decimal_places=2, default=Decimal('1.00'), max_digits=8)),
                ('unit_price', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('line_total', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('tag', models.CharField(choices=[('service', 'Service'), ('extension_fee', 'Extension fee'), ('late_fee', 'Late fee')], default='service', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('invoice', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='service_lines', to='frontdesk.invoice')),
                ('service', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to='frontdesk.service')),
            ],
            options={
                'ordering': ['id'],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('method', models.CharField(choices=PAYMENT_METHODS, default='cash', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('invoice', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='frontdesk.invoice')),
            ],
            options={
                'ordering': ['id'],
            },
        ),
        migrations.CreateModel(
            name='Refund',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=0, default=Decimal('0'), max_digits=14)),
                ('reason', models.CharField(max_length=255)),
                ('method', models.CharField(choices=PAYMENT_METHODS, default='cash', max_length=20)),
                ('date', models.DateField(default=django.utils.timezone.localdate)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('invoice', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='refunds', to='frontdesk.invoice')),
            ],
            options={
                'ordering': ['id'],
            },
        ),
    ]
