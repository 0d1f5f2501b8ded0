from esg_app import create_app, db
from esg_app.models import User
from esg_app.reference_data import seed_reference_taxonomy

app = create_app()


@app.cli.command("init-db")
def init_db():
    """Initialize the database and create admin user."""
    db.create_all()
    if not User.query.filter_by(username="admin").first():
        admin = User(
            username="admin",
            email="admin@example.com",
            role="admin",
            full_name="Administrator",
        )
        admin.set_password("admin123")
        db.session.add(admin)
        db.session.commit()
        print("Database initialized. Admin user created (admin / admin123)")
    else:
        print("Database already initialized.")


@app.cli.command("seed-taxonomy")
def seed_taxonomy():
    """Load the starter sectors, standards, issues, criteria and indicators."""
    links = seed_reference_taxonomy()
    print(f"Reference taxonomy loaded ({links} links).")


if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5000)
