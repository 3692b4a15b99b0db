import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ActorLocation',
            fields=[
                ('actor', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='current_location', serialize=False, to=settings.AUTH_USER_MODEL)),
                ('latitude', models.FloatField()),
                ('longitude', models.FloatField()),
                ('updated_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'actor_locations',
                'indexes': [models.Index(fields=['latitude', 'longitude'], name='actor_loc_lat_lon_idx')],
            },
        ),
        migrations.CreateModel(
            name='LocationSample',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('latitude', models.FloatField()),
                ('longitude', models.FloatField()),
                ('captured_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('actor', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='location_samples', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'location_samples',
                'ordering': ['-captured_at', '-id'],
                'indexes': [
                    models.Index(fields=['actor', '-captured_at'], name='loc_sample_actor_time_idx'),
                    models.Index(fields=['captured_at'], name='loc_sample_time_idx'),
                ],
            },
        ),
    ]
