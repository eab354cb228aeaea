import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import deliveries.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='DeliveryRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True, default='')),
                ('category', models.CharField(choices=[('documents', 'Documents'), ('electronics', 'Electronics'), ('clothing', 'Clothing'), ('food', 'Food'), ('fragile', 'Fragile'), ('books', 'Books'), ('gifts', 'Gifts'), ('other', 'Other')], default='other', max_length=20)),
                ('urgency', models.CharField(choices=[('standard', 'Standard'), ('express', 'Express'), ('urgent', 'Urgent')], default='standard', max_length=10)),
                ('item_name', models.CharField(max_length=255)),
                ('quantity', models.PositiveIntegerField(default=1)),
                ('weight', models.DecimalField(decimal_places=2, max_digits=8)),
                ('value', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('dimensions', models.JSONField(blank=True, null=True)),
                ('is_fragile', models.BooleanField(default=False)),
                ('pickup_address', models.CharField(blank=True, default='', max_length=500)),
                ('pickup_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('pickup_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('pickup_time_start', models.DateTimeField(blank=True, null=True)),
                ('pickup_time_end', models.DateTimeField(blank=True, null=True)),
                ('flexible_pickup_timing', models.BooleanField(default=False)),
                ('dropoff_address', models.CharField(blank=True, default='', max_length=500)),
                ('dropoff_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('dropoff_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('delivery_time_start', models.DateTimeField(blank=True, null=True)),
                ('delivery_time_end', models.DateTimeField(blank=True, null=True)),
                ('max_price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('auto_accept_price', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('blacklisted_travelers', models.JSONField(blank=True, default=list)),
                ('min_traveler_rating', models.DecimalField(decimal_places=2, default=0, max_digits=3)),
                ('verification_required', models.BooleanField(default=False)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('matched', 'Matched'), ('accepted', 'Accepted'), ('picked_up', 'Picked Up'), ('in_transit', 'In Transit'), ('delivered', 'Delivered'), ('cancelled', 'Cancelled'), ('expired', 'Expired')], default='pending', max_length=20)),
                ('expires_at', models.DateTimeField(default=deliveries.models.default_request_expiry)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.TextField(blank=True, null=True)),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='delivery_requests', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'delivery_requests',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'created_at'], name='dreq_status_created_idx'),
                    models.Index(fields=['expires_at'], name='dreq_expires_at_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DeliveryOffer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('trip_id', models.CharField(blank=True, max_length=64, null=True)),
                ('price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('message', models.TextField(blank=True, default='')),
                ('estimated_pickup_time', models.DateTimeField(blank=True, null=True)),
                ('estimated_delivery_time', models.DateTimeField(blank=True, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('declined', 'Declined'), ('expired', 'Expired'), ('withdrawn', 'Withdrawn')], default='pending', max_length=20)),
                ('valid_until', models.DateTimeField(default=deliveries.models.default_offer_validity)),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('declined_at', models.DateTimeField(blank=True, null=True)),
                ('declined_reason', models.TextField(blank=True, null=True)),
                ('withdrawn_at', models.DateTimeField(blank=True, null=True)),
                ('expired_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('delivery_request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offers', to='deliveries.deliveryrequest')),
                ('traveler', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='delivery_offers', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'delivery_offers',
                'ordering': ['price', 'created_at'],
                'indexes': [
                    models.Index(fields=['delivery_request', 'status'], name='doffer_request_status_idx'),
                    models.Index(fields=['traveler', 'status', 'created_at'], name='doffer_traveler_status_idx'),
                    models.Index(fields=['status', 'valid_until'], name='doffer_status_valid_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'accepted')), fields=('delivery_request',), name='one_accepted_offer_per_request'),
                    models.UniqueConstraint(condition=models.Q(('status__in', ['pending', 'accepted'])), fields=('delivery_request', 'traveler'), name='one_active_offer_per_traveler'),
                    models.CheckConstraint(condition=models.Q(('price__gt', 0)), name='offer_price_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Delivery',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('trip_id', models.CharField(blank=True, max_length=64, null=True)),
                ('delivery_number', models.CharField(max_length=20, unique=True)),
                ('status', models.CharField(choices=[('accepted', 'Accepted'), ('pickup_scheduled', 'Pickup Scheduled'), ('picked_up', 'Picked Up'), ('in_transit', 'In Transit'), ('delivery_scheduled', 'Delivery Scheduled'), ('delivered', 'Delivered'), ('cancelled', 'Cancelled'), ('disputed', 'Disputed')], default='accepted', max_length=20)),
                ('final_price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('special_requests', models.TextField(blank=True, null=True)),
                ('accepted_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('delivery_request', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='delivery', to='deliveries.deliveryrequest')),
                ('offer', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='delivery', to='deliveries.deliveryoffer')),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='customer_deliveries', to=settings.AUTH_USER_MODEL)),
                ('traveler', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='traveler_deliveries', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'deliveries',
                'ordering': ['-created_at'],
                'verbose_name_plural': 'deliveries',
                'indexes': [
                    models.Index(fields=['customer', 'status'], name='delivery_customer_status_idx'),
                    models.Index(fields=['traveler', 'status'], name='delivery_traveler_status_idx'),
                ],
            },
        ),
    ]
