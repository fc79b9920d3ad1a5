from decimal import Decimal

import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("courses", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="course",
            name="price",
            field=models.DecimalField(decimal_places=4, default=Decimal("0"), max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal("0"))]),
        ),
    ]
