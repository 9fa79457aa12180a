import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.campus.models import DocumentType, Permission, Role, User
from scripts._db_utils import script_session

PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("documents.view", "Documents: view"),
    ("documents.create", "Documents: create"),
    ("documents.edit", "Documents: edit and manage files"),
    ("documents.delete", "Documents: move to trash"),
    ("documents.restore", "Documents: restore from trash"),
    ("documents.force_delete", "Documents: delete permanently"),
    ("documents.status", "Documents: change status"),
    ("document_types.view", "Document types: view"),
    ("document_types.create", "Document types: create"),
    ("document_types.edit", "Document types: edit"),
    ("document_types.delete", "Document types: move to trash"),
    ("document_types.restore", "Document types: restore from trash"),
    ("document_types.force_delete", "Document types: delete permanently"),
    ("publications.view", "Publications: view"),
    ("publications.create", "Publications: create and duplicate"),
    ("publications.edit", "Publications: edit and manage files"),
    ("publications.delete", "Publications: move to trash"),
    ("publications.restore", "Publications: restore from trash"),
    ("publications.force_delete", "Publications: delete permanently"),
)

DOCUMENT_TYPES: tuple[str, ...] = (
    "Enrollment Request",
    "Enrollment Renewal Request",
    "Enrollment Cancellation Request",
    "Course Transfer Request",
    "Certificate Request",
    "Diploma Request",
    "Enrollment Declaration Request",
    "Grade Transcript Request",
    "Grade Review Request",
    "Credit Recognition Request",
    "Tuition Exemption Request",
    "Payment Plan Request",
)


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions, the admin role/user and the document type catalogue idempotently.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@campus.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///campus.db").strip()

    # Direct engine/session so this can run in release without building the app.
    with script_session(db_url) as s:
        role_admin = s.query(Role).filter(Role.key == "admin").one_or_none()
        if not role_admin:
            role_admin = Role(key="admin", name="Administrator")
            s.add(role_admin)

        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            if p not in role_admin.permissions:
                role_admin.permissions.append(p)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Admin",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

        # Trashed names count as taken; a type someone deleted stays deleted.
        existing = {name for (name,) in s.query(DocumentType.name).all()}
        for name in DOCUMENT_TYPES:
            if name not in existing:
                s.add(DocumentType(name=name))

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
