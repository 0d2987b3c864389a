# src/ra_law_rag/backend/db/models/legal.py

from __future__ import annotations

import uuid
from datetime import date
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, Date, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


class KnowledgeBaseModel(Base, TimestampMixin):
    """
    [职责] 法规索引（normative）：立法文本及其版本信息。
    [边界] 只读于检索管线；写入由外部 ingestion 负责。
    [上游关系] ingestion / 管理端写入。
    [下游关系] keyword tier（ILIKE）与全文兜底（search_knowledge_base / kb_fts）读取。
    """

    __tablename__ = "knowledge_base"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="法规条目ID（UUID字符串）",
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False, comment="标题")  # docstring: keyword +3

    content_text: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="正文")

    category: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="法规类别（constitution/criminal_code/...）",
    )

    source_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, comment="来源名称")
    source_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True, comment="来源链接")
    article_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, comment="条款编号")

    version_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, comment="版本日期")
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True, comment="生效起始日")
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True, comment="失效日（空=现行）")

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="是否参与检索",  # docstring: 所有 tier 仅检索 active 行
    )


class LegalPracticeModel(Base, TimestampMixin):
    """
    [职责] 判例索引（practice）：法院裁判及其结构化摘要、precedent units。
    [边界] ECHR 判例通过 practice_category='echr' 区分，不另建索引。
    [上游关系] ingestion / 管理端写入；key_paragraphs 由后台 enrichment 生成。
    [下游关系] keyword tier（title / legal_reasoning_summary）与全文兜底（search_legal_practice / practice_fts）。
    """

    __tablename__ = "legal_practice_kb"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="判例ID（UUID字符串）",
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False, comment="案件标题")
    content_text: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="裁判全文")

    practice_category: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
        comment="分类：criminal/civil/administrative/echr",
    )
    court_type: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="法院层级：first_instance/appeal/cassation/constitutional/echr",
    )
    court_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, comment="法院名称")
    outcome: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        comment="结果：granted/rejected/partial/remanded/discontinued",
    )
    decision_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, comment="裁判日期")
    case_number_anonymized: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, comment="匿名案号")

    applied_articles: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True, comment="适用条款（JSON）")
    key_violations: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True, comment="关键违法点列表")
    legal_reasoning_summary: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="裁判理由摘要",  # docstring: keyword +2
    )
    key_paragraphs: Mapped[Optional[List[dict]]] = mapped_column(
        JSON,
        nullable=True,
        comment="precedent units：[{rule_text, quote, anchor, issue_id}]",
    )

    source_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, comment="来源名称")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
