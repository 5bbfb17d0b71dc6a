from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

class BookOut(BaseModel):
    id: int
    title: str
    author: str
    category: Optional[str] = None
    stock: int
    image_url: Optional[str] = None
    published_year: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": 1,
                "title": "Laskar Pelangi",
                "author": "Andrea Hirata",
                "category": "Novel",
                "stock": 3,
                "image_url": "/upload/books/5f1c0e.jpg",
                "published_year": 2005,
                "created_at": "2025-10-01T12:00:00"
            }
        }

class CategoryOut(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
