from sqlalchemy.orm import Session
from bathhouse.models.setting import Setting

def get_int_setting(db: Session, key: str, default: int) -> int:
    s = db.get(Setting, key)
    if s and s.int_value is not None:
        return int(s.int_value)
    return default

def set_int_setting(db: Session, key: str, value: int) -> int:
    if value < 0:
        raise ValueError("value must be >= 0")
    s = db.get(Setting, key)
    if not s:
        s = Setting(key=key, int_value=int(value), str_value=None)
        db.add(s)
    else:
        s.int_value = int(value)
    db.commit()
    return int(value)
