from lunebilling import create_app

app = create_app()
