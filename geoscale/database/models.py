"""
SQLAlchemy Models for the GeoScale heat map

Tables:
1. projects            - client websites being tracked
2. project_locations   - towns a project targets
3. location_keywords   - keyword + location combinations
4. location_ranking_grid - latest per-point position for each phrase
5. heat_map_scans      - scan history (parameters + aggregate + weak locations)

Portable types (Uuid, JSON) so the same models run on PostgreSQL and SQLite.
"""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text,
    ForeignKey, Enum, Index, UniqueConstraint, CheckConstraint,
    JSON, Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# =============================================================================
# ENUMS
# =============================================================================

class CombinationStatus(enum.Enum):
    """Content status of a keyword + location combination"""
    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    PUBLISHED = "published"
    FAILED = "failed"


class LocationSource(enum.Enum):
    """How a location was added to a project"""
    MANUAL = "manual"
    NEARBY_SEARCH = "nearby_search"   # Places nearby search
    HEAT_MAP = "heat_map"             # Weak location from a heat map scan


# =============================================================================
# CORE TABLES
# =============================================================================

class Project(Base):
    """Client website being tracked"""
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_name = Column(String(255), nullable=False)
    company_name = Column(String(255))  # Name as it appears on Google Maps

    # Geography
    base_location = Column(String(255))
    latitude = Column(Float)
    longitude = Column(Float)

    # Content
    base_keyword = Column(String(255))
    blog_url = Column(String(2000))

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    locations = relationship("ProjectLocation", back_populates="project", cascade="all, delete-orphan")
    combinations = relationship("Combination", back_populates="project", cascade="all, delete-orphan")
    heat_map_scans = relationship("HeatMapScan", back_populates="project", cascade="all, delete-orphan")

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class ProjectLocation(Base):
    """Town targeted by a project"""
    __tablename__ = "project_locations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    place_id = Column(String(255))  # Google place id (null for manual/heat map towns)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    lat = Column(Float)
    lng = Column(Float)
    region = Column(String(255))
    country = Column(String(10), default="GB")
    source = Column(Enum(LocationSource), default=LocationSource.MANUAL)

    created_at = Column(DateTime, default=datetime.utcnow)

    project = relationship("Project", back_populates="locations")
    combinations = relationship("Combination", back_populates="location")

    __table_args__ = (
        UniqueConstraint("project_id", "slug", name="uq_project_location_slug"),
        Index("idx_project_locations_project", "project_id"),
    )


class Combination(Base):
    """One keyword paired with one location - the unit content and tracking key on"""
    __tablename__ = "location_keywords"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    location_id = Column(Uuid, ForeignKey("project_locations.id", ondelete="SET NULL"))

    keyword = Column(String(500), nullable=False)
    phrase = Column(String(500), nullable=False)  # e.g. "web design in doncaster"
    status = Column(Enum(CombinationStatus), default=CombinationStatus.PENDING)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="combinations")
    location = relationship("ProjectLocation", back_populates="combinations")

    __table_args__ = (
        UniqueConstraint("project_id", "phrase", name="uq_combination_phrase"),
        Index("idx_location_keywords_project", "project_id"),
    )


# =============================================================================
# HEAT MAP TABLES
# =============================================================================

class RankingGridPoint(Base):
    """Latest position at one grid point for a phrase (upserted every scan)"""
    __tablename__ = "location_ranking_grid"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    location_keyword_id = Column(Uuid, ForeignKey("location_keywords.id", ondelete="CASCADE"))
    keyword_combination = Column(Text, nullable=False)

    grid_x = Column(Integer, nullable=False)  # 0 to grid_size-1
    grid_y = Column(Integer, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    position = Column(Integer)  # null if not ranked
    business_count = Column(Integer)
    search_location = Column(String(50))  # "lat,lng" used for the lookup

    grid_size = Column(Integer, nullable=False)
    radius_km = Column(Float, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "project_id", "keyword_combination", "grid_x", "grid_y",
            name="uq_ranking_grid_point",
        ),
        CheckConstraint("position IS NULL OR position > 0", name="ck_ranking_grid_position"),
        Index("idx_ranking_grid_project", "project_id"),
    )


class HeatMapScan(Base):
    """Snapshot of one heat map scan, for history and trend charts"""
    __tablename__ = "heat_map_scans"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    keyword_combination = Column(Text, nullable=False)

    # Parameters
    grid_size = Column(Integer, nullable=False)
    radius_km = Column(Float, nullable=False)
    center_lat = Column(Float, nullable=False)
    center_lng = Column(Float, nullable=False)

    # Aggregate
    average_position = Column(Integer)
    ranked_count = Column(Integer, nullable=False, default=0)
    not_ranked_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), default="complete")  # complete, partial, failed

    weak_locations = Column(JSON, default=list)  # [{name, position, lat, lng}, ...]
    grid_data = Column(JSON)                     # [{grid_x, grid_y, latitude, longitude, position, business_count}, ...]

    api_cost = Column(Float, default=0)

    scanned_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    project = relationship("Project", back_populates="heat_map_scans")

    __table_args__ = (
        Index("idx_heat_map_scans_project_keyword", "project_id", "keyword_combination", "scanned_at"),
    )
