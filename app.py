# app.py
from core import create_app

app = create_app()

# Local dev entrypoint: python app.py, or flask --app app run
if __name__ == "__main__":
    app.run(debug=True)
