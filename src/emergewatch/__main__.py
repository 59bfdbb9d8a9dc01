from emergewatch.cli import app

app()
