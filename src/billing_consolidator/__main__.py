from billing_consolidator.cli import app

app()
