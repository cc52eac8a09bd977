from __future__ import annotations

from pydantic import BaseModel


class TimeseriesProfile(BaseModel):
    """One row of `show timeseries`."""

    timeseries: str
    alias: str = ""
    database: str = ""
    data_type: str = ""
    encoding: str = ""
    compression: str = ""
    tags: str = ""
    attributes: str = ""
    deadband: str = ""
    deadband_parameters: str = ""


class SeriesCount(BaseModel):
    name: str
    count: int


class StreamStatus(BaseModel):
    status: str
    iotdb: str
    root: str
    connections: int
