from intranet.database.base import Base
from intranet.database.session import SessionLocal, engine
from intranet.models import chat  # noqa: F401
from intranet.models.user import User
from intranet.core.security import hash_password

def create_admin():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    existing_admin = db.query(User).filter(User.role == "admin").first()
    if existing_admin:
        print("Admin already exists")
        db.close()
        return

    admin = User(
        first_name="System",
        last_name="Admin",
        email="admin@company.com",
        password_hash=hash_password("Admin@123"),
        role="admin",
        position="Administrator",
    )

    db.add(admin)
    db.commit()
    db.close()

    print("Admin created successfully")

if __name__ == "__main__":
    create_admin()
