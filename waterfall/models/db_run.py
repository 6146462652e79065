"""
Postgres-backed archive of finished waterfall runs.

Live runs are snapshotted to Redis; once a run reaches a terminal status its
final state and full execution log are written here.
"""
from sqlalchemy import Column, Text, Integer, DateTime, JSON, Index
from sqlalchemy.sql import func

from waterfall.database import Base


class DbWaterfallRun(Base):
    __tablename__ = 'waterfall_runs'

    id = Column(Text, primary_key=True)  # run_id
    lane_id = Column(Text, nullable=False)
    load_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default='running')
    current_stage_index = Column(Integer, default=0)
    stage_count = Column(Integer, default=0)
    accepted_carrier_id = Column(Text, nullable=True)
    outcomes = Column(JSON, default=dict)
    stages = Column(JSON, nullable=True)
    log = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_waterfall_runs_lane_load', 'lane_id', 'load_id'),
    )
