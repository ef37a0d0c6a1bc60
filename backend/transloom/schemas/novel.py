"""
Novel Document Models / 小说文档数据模型

Paragraphs keep an append-only translation history plus a "selected" pointer.
段落保存只追加的译文历史和"当前选中"指针。
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from transloom.utils.ids import generate_short_id


class Translation(BaseModel):
    """Translation version / 译文版本（创建后不可变）"""

    model_config = {"frozen": True}

    id: str = Field(default_factory=generate_short_id, description="Translation ID / 译文ID")
    text: str = Field(..., description="Translated text / 译文")
    model_id: str = Field(default="", description="Producing model ID / 生成该译文的模型ID")


class Paragraph(BaseModel):
    """Paragraph model / 段落模型"""

    id: str = Field(..., description="Paragraph ID / 段落ID")
    text: str = Field(default="", description="Source text / 原文")
    translations: List[Translation] = Field(
        default_factory=list,
        description="Translation history, oldest first / 译文历史（旧→新）",
    )
    selected_translation_id: Optional[str] = Field(
        default=None,
        description="Selected translation ID / 当前选中的译文ID",
    )

    @model_validator(mode="after")
    def _check_selected_pointer(self) -> "Paragraph":
        if self.selected_translation_id and not any(
            t.id == self.selected_translation_id for t in self.translations
        ):
            raise ValueError(
                f"Paragraph {self.id}: selected translation {self.selected_translation_id} "
                "is not in its translation history"
            )
        return self

    @property
    def is_empty(self) -> bool:
        """Structurally empty paragraphs (blank source) are never targeted."""
        return not (self.text or "").strip()

    @property
    def is_translated(self) -> bool:
        return bool(self.selected_translation_id) and bool(self.translations)

    def selected_translation(self) -> Optional[Translation]:
        for translation in self.translations:
            if translation.id == self.selected_translation_id:
                return translation
        return None

    def selected_text(self) -> str:
        selected = self.selected_translation()
        return selected.text if selected else ""

    def append_translation(self, text: str, model_id: str) -> Translation:
        """
        追加新译文版本并设为选中 / Append a new version and point "selected" at it.

        Existing versions are never edited; corrections always add a version.
        """
        translation = Translation(text=text, model_id=model_id)
        self.translations = [*self.translations, translation]
        self.selected_translation_id = translation.id
        return translation


class ChapterTitle(BaseModel):
    """Chapter title with optional translation / 章节标题"""

    original: str = Field(default="", description="Original title / 原标题")
    translation: Optional[Translation] = Field(default=None, description="Title translation / 标题译文")

    @property
    def is_translated(self) -> bool:
        if not self.original.strip():
            return True
        return self.translation is not None and bool(self.translation.text.strip())


class Chapter(BaseModel):
    """Chapter model / 章节模型

    ``content`` is None when the paragraphs have not been loaded from the store.
    """

    id: str = Field(..., description="Chapter ID / 章节ID")
    title: ChapterTitle = Field(default_factory=ChapterTitle, description="Chapter title / 章节标题")
    content: Optional[List[Paragraph]] = Field(default=None, description="Paragraphs / 段落")
    last_edited: datetime = Field(default_factory=datetime.now, description="Last edited / 最后编辑时间")

    def paragraphs(self) -> List[Paragraph]:
        return list(self.content or [])

    def find_paragraph(self, paragraph_id: str) -> Optional[Paragraph]:
        for paragraph in self.content or []:
            if paragraph.id == paragraph_id:
                return paragraph
        return None


class Volume(BaseModel):
    """Volume model / 分卷模型"""

    id: str = Field(..., description="Volume ID / 分卷ID")
    title: str = Field(default="", description="Volume title / 分卷标题")
    chapters: List[Chapter] = Field(default_factory=list, description="Chapters / 章节")


class Novel(BaseModel):
    """Book model / 书籍模型"""

    id: str = Field(..., description="Book ID / 书籍ID")
    title: str = Field(default="", description="Book title / 书名")
    volumes: List[Volume] = Field(default_factory=list, description="Volumes / 分卷")
    last_edited: datetime = Field(default_factory=datetime.now, description="Last edited / 最后编辑时间")

    def find_chapter(self, chapter_id: str) -> Optional[Chapter]:
        for volume in self.volumes:
            for chapter in volume.chapters:
                if chapter.id == chapter_id:
                    return chapter
        return None
