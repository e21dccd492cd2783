from meter_reconcile.cli import app

app()
