import os
import uuid
import logging
import datetime
from pathlib import Path
from sqlalchemy import or_, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from simpus.core.models import Book, Category, Loan
from simpus.core.db import contains_pattern, LIKE_ESCAPE
from simpus.configs import UPLOAD_DIR, MAX_COVER_SIZE
from simpus.core.exceptions import (
    StorageError,
    ValidationError,
    BookNotFoundError,
    BookInUseError,
    CategoryExistsError,
    CategoryNotFoundError,
    InvalidFileError,
    FileTooLargeError,
)

logger = logging.getLogger(__name__)

BOOK_FIELDS = ("title", "author", "category", "stock", "published_year", "image_url")


class Catalog:
    """Book records and stock counts.

    Stock is only ever changed here as an explicit admin correction;
    borrowing and returning go through the loan engine.
    """

    VALID_COVER_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
    COVERS_PATH = "books"

    def __init__(self, db, upload_dir=UPLOAD_DIR, max_cover_size=MAX_COVER_SIZE):
        self.db = db
        self.upload_dir = upload_dir
        self.max_cover_size = max_cover_size

    @classmethod
    def _validate(cls, fields):
        if "title" in fields and not (fields["title"] or "").strip():
            raise ValidationError("Title is required")
        if "stock" in fields and (fields["stock"] is None or fields["stock"] < 0):
            raise ValidationError("Stock must be >= 0")

    def _commit(self, action):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to {action}: {e}") from e

    def create(self, title, author="", category=None, stock=0,
               published_year=None, image_url=None, now=None) -> Book:
        self._validate({"title": title, "stock": stock})
        book = Book(
            title=title.strip(),
            author=author or "",
            category=category,
            stock=stock,
            published_year=published_year,
            image_url=image_url,
            created_at=now or datetime.datetime.now()
        )
        self.db.add(book)
        self._commit("create book")
        logger.info(f"Created book {book.id}: {book.title}")
        return book

    def get(self, book_id) -> Book:
        if book := self.db.get(Book, book_id):
            return book
        raise BookNotFoundError(f"Book {book_id} not found")

    def update(self, book_id, **fields) -> Book:
        """Partial update: only fields passed with a non-None value change."""
        changes = {k: v for k, v in fields.items() if k in BOOK_FIELDS and v is not None}
        self._validate(changes)
        book = self.get(book_id)
        for key, value in changes.items():
            setattr(book, key, value.strip() if key == "title" else value)
        self._commit("update book")
        return book

    def delete(self, book_id):
        book = self.get(book_id)
        if self.db.query(Loan.id).filter(Loan.book_id == book_id).first():
            raise BookInUseError(f"Book {book_id} has loan history and cannot be deleted")
        try:
            self.db.delete(book)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise BookInUseError(f"Book {book_id} is still referenced: {e}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete book: {e}") from e

    def list(self, offset=None, limit=None):
        return Book.get_many(self.db, offset=offset, limit=limit,
                             order_by=(Book.created_at.desc(), Book.id.desc()))

    def search(self, query):
        q = contains_pattern(query.lower())
        return self.db.query(Book).filter(or_(
            func.lower(Book.title).like(q, escape=LIKE_ESCAPE),
            func.lower(Book.author).like(q, escape=LIKE_ESCAPE),
            func.lower(func.coalesce(Book.category, "")).like(q, escape=LIKE_ESCAPE),
        )).order_by(Book.created_at.desc(), Book.id.desc()).all()

    def count(self) -> int:
        return self.db.query(Book).count()

    def save_cover(self, upload) -> str:
        """Stores an uploaded cover image and returns its public URL path."""
        ext = Path(upload.filename or "").suffix.lower()
        if ext not in self.VALID_COVER_EXTS:
            raise InvalidFileError(f"Invalid cover format '{ext}' for {upload.filename}")

        upload.file.seek(0)
        content = upload.file.read()
        if not content:
            raise InvalidFileError(f"{upload.filename} is empty")
        if len(content) > self.max_cover_size:
            one_mb = (1024 * 1024)
            raise FileTooLargeError(
                f"{upload.filename} exceeds {self.max_cover_size // one_mb}MB."
            )

        directory = os.path.join(self.upload_dir, self.COVERS_PATH)
        os.makedirs(directory, exist_ok=True)
        filename = f"{uuid.uuid4().hex}{ext}"
        with open(os.path.join(directory, filename), "wb") as fp:
            fp.write(content)
        return f"/upload/{self.COVERS_PATH}/{filename}"


class Categories:

    def __init__(self, db):
        self.db = db

    def create(self, name) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if self.db.query(Category).filter(Category.name == name).first():
            raise CategoryExistsError(f"Category '{name}' already exists")
        category = Category(name=name)
        try:
            self.db.add(category)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise CategoryExistsError(f"Category '{name}' already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to create category: {e}") from e
        return category

    def list(self):
        return self.db.query(Category).order_by(Category.name).all()

    def delete(self, category_id):
        category = self.db.get(Category, category_id)
        if category is None:
            raise CategoryNotFoundError(f"Category {category_id} not found")
        try:
            self.db.delete(category)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete category: {e}") from e
