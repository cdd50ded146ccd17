import argparse
import re

from sqlalchemy.orm import Session

from app.models.event import Event
from db import SessionLocal


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:64] or "event"


def upsert_event(name: str, host_id: str, slug: str | None) -> tuple[bool, int, str]:
    s: Session = SessionLocal()
    try:
        slug = slug or slugify(name)
        event = s.query(Event).filter(Event.Slug == slug).first()
        created = False
        if not event:
            event = Event(Slug=slug, Name=name, HostID=host_id)
            s.add(event)
            created = True
        else:
            if name:
                setattr(event, "Name", name)
            if host_id:
                setattr(event, "HostID", host_id)
        s.commit()
        s.refresh(event)
        return created, int(getattr(event, "EventID")), slug
    finally:
        s.close()


def main():
    parser = argparse.ArgumentParser(description="Create or update an event.")
    parser.add_argument("--name", required=True)
    parser.add_argument("--host", required=True, help="Host user id")
    parser.add_argument("--slug", default=None)
    args = parser.parse_args()

    created, event_id, slug = upsert_event(args.name.strip(), args.host.strip(), args.slug)
    status = "created" if created else "updated"
    print(f"Event {status}: id={event_id} slug={slug} live=/live/{slug}/stream")


if __name__ == "__main__":
    main()
