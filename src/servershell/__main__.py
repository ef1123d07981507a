from servershell.cli import app

app(prog_name="servershell")
