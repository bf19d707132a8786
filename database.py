"""
Database module for Atocrane
Quản lý cơ sở dữ liệu SQLite: hồ sơ (ảnh khuôn mặt), buổi học và điểm danh
"""

import json
import sqlite3
import logging
from datetime import datetime

from core.attendance.collaborators import DuplicateAttendanceError, EnrollmentLimitError
from core.attendance.window import EventWindow

logger = logging.getLogger('database')


class DatabaseManager:
    """SQLite stand-in for the hosted data platform.

    Implements the identity store, attendance ledger and event directory.
    """

    def __init__(self, db_path="atocrane.db"):
        self.db_path = str(db_path)
        self.init_database()

    def get_connection(self):
        """Tạo kết nối database"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Cho phép truy cập theo tên cột
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    def init_database(self):
        """Khởi tạo database và các bảng"""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            # Hồ sơ người dùng; face_image_urls là mảng JSON các ảnh tham chiếu
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS profiles (
                    id VARCHAR(64) PRIMARY KEY,
                    full_name VARCHAR(100),
                    email VARCHAR(100),
                    role VARCHAR(20) DEFAULT 'student',
                    face_image_urls TEXT DEFAULT '[]',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            # Buổi học; duration tính bằng phút
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS lectures (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title VARCHAR(150) NOT NULL,
                    professor_id VARCHAR(64),
                    scheduled_time TIMESTAMP NOT NULL,
                    duration INTEGER NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (professor_id) REFERENCES profiles(id)
                )
            ''')

            # Điểm danh: tối đa một bản ghi cho mỗi (sinh viên, buổi học)
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id VARCHAR(64) NOT NULL,
                    lecture_id INTEGER NOT NULL,
                    marked_at TIMESTAMP NOT NULL,
                    method VARCHAR(30) DEFAULT 'face_recognition',
                    confidence_score REAL,
                    image_url TEXT,
                    UNIQUE (student_id, lecture_id),
                    FOREIGN KEY (lecture_id) REFERENCES lectures(id) ON DELETE CASCADE
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_attendance_lecture
                ON attendance (lecture_id)
            ''')
            conn.commit()

    @staticmethod
    def _row_to_dict(row):
        return dict(row) if row is not None else None

    @staticmethod
    def _decode_urls(raw):
        if not raw:
            return []
        try:
            urls = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid face_image_urls payload: %r", raw)
            return []
        return [url for url in urls if isinstance(url, str) and url]

    # === HỒ SƠ / ẢNH THAM CHIẾU ===
    def upsert_profile(self, profile_id, full_name=None, email=None, role='student'):
        """Tạo hoặc cập nhật hồ sơ"""
        with self.get_connection() as conn:
            conn.execute('''
                INSERT INTO profiles (id, full_name, email, role)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    full_name = COALESCE(excluded.full_name, profiles.full_name),
                    email = COALESCE(excluded.email, profiles.email),
                    role = excluded.role,
                    updated_at = CURRENT_TIMESTAMP
            ''', (profile_id, full_name, email, role))
            conn.commit()
        return self.get_profile(profile_id)

    def get_profile(self, profile_id):
        with self.get_connection() as conn:
            row = conn.execute('SELECT * FROM profiles WHERE id = ?', (profile_id,)).fetchone()
        profile = self._row_to_dict(row)
        if profile is not None:
            profile['face_image_urls'] = self._decode_urls(profile.get('face_image_urls'))
        return profile

    def get_reference_images(self, identity_id):
        """Danh sách URL ảnh khuôn mặt đã đăng ký"""
        with self.get_connection() as conn:
            row = conn.execute(
                'SELECT face_image_urls FROM profiles WHERE id = ?', (identity_id,)
            ).fetchone()
        if row is None:
            return []
        return self._decode_urls(row['face_image_urls'])

    def set_reference_images(self, identity_id, image_urls):
        """Thay thế toàn bộ ảnh tham chiếu (đăng ký lại)"""
        urls = [url for url in image_urls if url]
        with self.get_connection() as conn:
            conn.execute('''
                INSERT INTO profiles (id, face_image_urls) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    face_image_urls = excluded.face_image_urls,
                    updated_at = CURRENT_TIMESTAMP
            ''', (identity_id, json.dumps(urls)))
            conn.commit()
        logger.info("Set %d reference images for %s", len(urls), identity_id)
        return urls

    def append_reference_image(self, identity_id, image_url, *, limit):
        """Thêm một ảnh tham chiếu, không vượt quá giới hạn"""
        with self.get_connection() as conn:
            conn.execute('BEGIN IMMEDIATE')
            row = conn.execute(
                'SELECT face_image_urls FROM profiles WHERE id = ?', (identity_id,)
            ).fetchone()
            urls = self._decode_urls(row['face_image_urls']) if row else []
            if len(urls) >= limit:
                conn.rollback()
                raise EnrollmentLimitError(
                    f"{identity_id} already has {len(urls)}/{limit} reference images"
                )
            urls.append(image_url)
            conn.execute('''
                INSERT INTO profiles (id, face_image_urls) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    face_image_urls = excluded.face_image_urls,
                    updated_at = CURRENT_TIMESTAMP
            ''', (identity_id, json.dumps(urls)))
            conn.commit()
        logger.info("Added reference image %d/%d for %s", len(urls), limit, identity_id)
        return urls

    def remove_reference_image(self, identity_id, image_url):
        """Xóa một ảnh tham chiếu; trả về danh sách còn lại hoặc None nếu không có"""
        urls = self.get_reference_images(identity_id)
        if image_url not in urls:
            return None
        urls.remove(image_url)
        return self.set_reference_images(identity_id, urls)

    # === BUỔI HỌC ===
    def create_lecture(self, title, scheduled_time, duration, professor_id=None):
        """Tạo buổi học (scheduled_time ISO-8601, duration phút)"""
        if isinstance(scheduled_time, datetime):
            scheduled_time = scheduled_time.isoformat()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO lectures (title, professor_id, scheduled_time, duration)
                VALUES (?, ?, ?, ?)
            ''', (title, professor_id, scheduled_time, int(duration)))
            conn.commit()
            return cursor.lastrowid

    def get_lecture(self, lecture_id):
        with self.get_connection() as conn:
            row = conn.execute('SELECT * FROM lectures WHERE id = ?', (lecture_id,)).fetchone()
        return self._row_to_dict(row)

    def list_lectures(self, professor_id=None):
        with self.get_connection() as conn:
            if professor_id:
                rows = conn.execute('''
                    SELECT * FROM lectures WHERE professor_id = ?
                    ORDER BY scheduled_time DESC
                ''', (professor_id,)).fetchall()
            else:
                rows = conn.execute('SELECT * FROM lectures ORDER BY scheduled_time DESC').fetchall()
        return [dict(row) for row in rows]

    def get_event_window(self, event_id):
        lecture = self.get_lecture(event_id)
        if lecture is None:
            return None
        return EventWindow.from_schedule(lecture['scheduled_time'], lecture['duration'])

    # === ĐIỂM DANH ===
    def record_attendance(self, identity_id, event_id, *, confidence=None, image_url=None,
                          method='face_recognition'):
        """Ghi điểm danh; bản ghi trùng (student_id, lecture_id) bị từ chối"""
        marked_at = datetime.now().isoformat()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute('''
                    INSERT INTO attendance (student_id, lecture_id, marked_at, method,
                                            confidence_score, image_url)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (identity_id, event_id, marked_at, method, confidence, image_url))
            except sqlite3.IntegrityError as exc:
                if 'UNIQUE' in str(exc).upper():
                    raise DuplicateAttendanceError(identity_id, event_id) from exc
                raise
            conn.commit()
            record_id = cursor.lastrowid
        logger.info("Marked attendance for %s in lecture %s", identity_id, event_id)
        return {
            'id': record_id,
            'student_id': identity_id,
            'lecture_id': event_id,
            'marked_at': marked_at,
            'method': method,
            'confidence_score': confidence,
            'image_url': image_url,
        }

    def has_attendance(self, identity_id, event_id):
        with self.get_connection() as conn:
            row = conn.execute('''
                SELECT 1 FROM attendance WHERE student_id = ? AND lecture_id = ?
            ''', (identity_id, event_id)).fetchone()
        return row is not None

    def get_lecture_attendance(self, lecture_id):
        with self.get_connection() as conn:
            rows = conn.execute('''
                SELECT a.*, p.full_name AS student_name
                FROM attendance a
                LEFT JOIN profiles p ON p.id = a.student_id
                WHERE a.lecture_id = ?
                ORDER BY a.marked_at
            ''', (lecture_id,)).fetchall()
        return [dict(row) for row in rows]

    def count_lecture_attendance(self, lecture_id):
        with self.get_connection() as conn:
            return conn.execute(
                'SELECT COUNT(*) FROM attendance WHERE lecture_id = ?', (lecture_id,)
            ).fetchone()[0]
