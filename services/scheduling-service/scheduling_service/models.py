from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, Integer, String

from shared.database import Base


class Engineer(Base):
    __tablename__ = "engineers"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="")
    email = Column(String, nullable=True, index=True)
    starting_postcode = Column(String, nullable=True)
    availability = Column(Boolean, nullable=False, default=True)
    is_subcontractor = Column(Boolean, nullable=False, default=False)
    ignore_working_hours = Column(Boolean, nullable=False, default=False)
    max_jobs_per_day = Column(Integer, nullable=True)


class EngineerAvailability(Base):
    __tablename__ = "engineer_availability"

    id = Column(Integer, primary_key=True)
    engineer_id = Column(String, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(String, nullable=False, default="09:00")
    end_time = Column(String, nullable=False, default="17:00")
    is_available = Column(Boolean, nullable=False, default=True)


class EngineerServiceArea(Base):
    __tablename__ = "engineer_service_areas"

    id = Column(Integer, primary_key=True)
    engineer_id = Column(String, nullable=False, index=True)
    postcode_area = Column(String, nullable=False)
    max_travel_minutes = Column(Integer, nullable=True)


class EngineerTimeOff(Base):
    __tablename__ = "engineer_time_off"

    id = Column(Integer, primary_key=True)
    engineer_id = Column(String, nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(String, nullable=True)
    status = Column(String, nullable=False, default="approved")


class Client(Base):
    __tablename__ = "clients"

    id = Column(String, primary_key=True)
    full_name = Column(String, nullable=True)
    postcode = Column(String, nullable=True)
    address = Column(String, nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    order_number = Column(String, nullable=True)
    client_id = Column(String, nullable=True, index=True)
    engineer_id = Column(String, nullable=True, index=True)
    postcode = Column(String, nullable=True)
    job_address = Column(String, nullable=True)
    estimated_duration_hours = Column(Float, nullable=True)
    time_window = Column(String, nullable=True)
    # naive UTC
    scheduled_install_date = Column(DateTime, nullable=True, index=True)
    status = Column(String, nullable=False, default="awaiting_payment", index=True)


class JobOffer(Base):
    __tablename__ = "job_offers"

    id = Column(String, primary_key=True)
    order_id = Column(String, nullable=False, index=True)
    engineer_id = Column(String, nullable=False, index=True)
    offered_date = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, index=True)  # pending/accepted/rejected/expired
    expires_at = Column(DateTime, nullable=True)


class ClientBlockedDate(Base):
    __tablename__ = "client_blocked_dates"

    id = Column(Integer, primary_key=True)
    client_id = Column(String, nullable=False, index=True)
    blocked_date = Column(Date, nullable=False)
    reason = Column(String, nullable=True)


class AdminSetting(Base):
    __tablename__ = "admin_settings"

    id = Column(Integer, primary_key=True)
    setting_key = Column(String, unique=True, nullable=False)
    setting_value = Column(JSON, nullable=False)
