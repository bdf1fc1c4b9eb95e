from app.pixelforge import create_app

app = create_app()
