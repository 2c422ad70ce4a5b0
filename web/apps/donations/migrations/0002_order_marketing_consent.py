from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("donations", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="ordermodel",
            name="marketing_email",
            field=models.BooleanField(default=False),
        ),
        migrations.AddField(
            model_name="ordermodel",
            name="marketing_sms",
            field=models.BooleanField(default=False),
        ),
    ]
