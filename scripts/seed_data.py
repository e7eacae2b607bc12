# Seed projects, a demo account and a trial coupon
# DEMO_PASSWORD sets a login password on the demo account
import os

from sqlalchemy import select
from sqlalchemy.orm import Session
from creatorhub.auth import hash_password
from creatorhub.db import SessionLocal
from creatorhub.models import Coupon, Project, User

PROJECTS = [
    {"slug": "content-creator", "name": "Content Creator", "description": "Scripts, hooks and captions"},
    {"slug": "image-studio", "name": "Image Studio", "description": "Thumbnails and social graphics"},
    {"slug": "brand-strategist", "name": "Brand Strategist", "requires_tier2": True},
    {"slug": "video-editor", "name": "Video Editor", "coming_soon": True},
]

def main():
    db: Session = SessionLocal()
    try:
        for project in PROJECTS:
            if not db.execute(select(Project).where(Project.slug == project["slug"])).scalar_one_or_none():
                db.add(Project(**project))
        if not db.execute(select(User).where(User.email == "demo@example.com")).scalar_one_or_none():
            password = os.getenv("DEMO_PASSWORD")
            db.add(User(email="demo@example.com", name="Demo", password_hash=hash_password(password) if password else None))
        if not db.get(Coupon, "TRIALDEMO0001"):
            db.add(Coupon(code="TRIALDEMO0001", type="trial", months=3, max_uses=100, uses=0))
        db.commit()
        print(f"Seeded {len(PROJECTS)} projects, demo@example.com and coupon TRIALDEMO0001")
    finally:
        db.close()

if __name__ == "__main__":
    main()
