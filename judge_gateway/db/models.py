from sqlalchemy import Column, DateTime, Float, Integer, String, Text, func

from .database import Base


class ExecutionLog(Base):
    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    language = Column(String(20), nullable=False)
    code_length = Column(Integer, nullable=False)
    execution_time_ms = Column(Float, nullable=True)
    memory_usage_kb = Column(Integer, nullable=True)
    status = Column(String(64), nullable=False)  # e.g. 'Accepted', 'Wrong Answer', 'Error'
    stdout = Column(Text, nullable=True)
    stderr = Column(Text, nullable=True)
    compile_output = Column(Text, nullable=True)
    test_cases_passed = Column(Integer, nullable=True)
    total_test_cases = Column(Integer, nullable=True)
    success_rate = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
