from datetime import datetime
from pydantic import BaseModel
from typing import List, Literal, Optional

ArticleCategory = Literal["INFO", "URGENT", "SPORT", "SANTÉ", "TRAVAUX"]
BlockType = Literal["paragraph", "heading"]


class ContentBlock(BaseModel):
    id: Optional[str] = None
    type: BlockType = "paragraph"
    content: str = ""


class ArticleIn(BaseModel):
    title: str = ""
    category: ArticleCategory = "INFO"
    image: Optional[str] = None
    # date de mise en avant ; maintenant si absente
    scheduled_at: Optional[datetime] = None
    blocks: List[ContentBlock] = []
    published: bool = True


class ArticleUpdate(BaseModel):
    title: Optional[str] = None
    category: Optional[ArticleCategory] = None
    image: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    blocks: Optional[List[ContentBlock]] = None
    published: Optional[bool] = None
