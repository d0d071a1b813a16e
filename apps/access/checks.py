"""System checks for meal access data."""
from django.core import checks
from django.db import connections
from django.db.models import Q


@checks.register(checks.Tags.database)
def check_mess_coordinates(app_configs=None, databases=None, **kwargs):
    """Every mess must have coordinates before it can take a scan."""
    from apps.core.models import Mess

    errors = []
    for alias in databases or ():
        if Mess._meta.db_table not in connections[alias].introspection.table_names():
            continue
        bare = Mess.objects.using(alias).filter(Q(latitude__isnull=True) | Q(longitude__isnull=True))
        for mess in bare:
            errors.append(checks.Error(
                f"Mess {mess.code} has no registered coordinates",
                hint="Set latitude and longitude; scans at this mess fail until then.",
                obj=mess,
                id='access.E001',
            ))
    return errors
