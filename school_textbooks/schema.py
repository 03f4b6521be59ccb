SCHEMA_SQL = r"""
-- Textbook catalog (stock fields are owned by the stock ledger)
CREATE TABLE IF NOT EXISTS textbooks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  title TEXT NOT NULL,
  author TEXT,
  subject TEXT NOT NULL,
  publisher TEXT,
  isbn TEXT,
  language TEXT,
  grade_from INTEGER NOT NULL,
  grade_to INTEGER,

  total_stock INTEGER NOT NULL DEFAULT 0,       -- physical copies ever acquired
  available_stock INTEGER NOT NULL DEFAULT 0,   -- copies not currently allocated
  created_at TEXT NOT NULL,                     -- ISO datetime

  CHECK (available_stock >= 0 AND available_stock <= total_stock)
);

-- Teachers (directory)
CREATE TABLE IF NOT EXISTS teachers (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  full_name TEXT NOT NULL,
  phone TEXT,
  created_at TEXT NOT NULL
);

-- Branches (a class within a grade, e.g. 7A)
CREATE TABLE IF NOT EXISTS branches (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  grade INTEGER NOT NULL,
  student_count INTEGER NOT NULL DEFAULT 0 CHECK (student_count >= 0),
  teacher_id INTEGER,
  UNIQUE (name, grade),
  FOREIGN KEY (teacher_id) REFERENCES teachers(id) ON DELETE SET NULL
);

-- Students (directory)
CREATE TABLE IF NOT EXISTS students (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  full_name TEXT NOT NULL,
  student_code TEXT NOT NULL UNIQUE,
  grade INTEGER,
  branch_id INTEGER,
  FOREIGN KEY (branch_id) REFERENCES branches(id) ON DELETE SET NULL
);

-- Named textbook sets per grade
CREATE TABLE IF NOT EXISTS textbook_sets (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  grade INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS textbook_set_items (
  set_id INTEGER NOT NULL,
  textbook_id INTEGER NOT NULL,
  PRIMARY KEY (set_id, textbook_id),
  FOREIGN KEY (set_id) REFERENCES textbook_sets(id) ON DELETE CASCADE,
  FOREIGN KEY (textbook_id) REFERENCES textbooks(id) ON DELETE CASCADE
);

-- Batch distributions (one set to one branch)
CREATE TABLE IF NOT EXISTS distributions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  branch_id INTEGER NOT NULL,
  set_id INTEGER NOT NULL,
  academic_year TEXT NOT NULL,            -- e.g. 2025-2026
  distributed_at TEXT NOT NULL,           -- ISO datetime
  returned_at TEXT,                       -- set when status first leaves 'distributed'
  status TEXT NOT NULL DEFAULT 'distributed',  -- distributed / partial / returned
  notes TEXT,
  return_notes TEXT,
  request_key TEXT,

  FOREIGN KEY (branch_id) REFERENCES branches(id),
  FOREIGN KEY (set_id) REFERENCES textbook_sets(id)
);

CREATE TABLE IF NOT EXISTS distribution_details (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  distribution_id INTEGER NOT NULL,
  textbook_id INTEGER NOT NULL,
  distributed_qty INTEGER NOT NULL,
  returned_qty INTEGER NOT NULL DEFAULT 0,
  missing_qty INTEGER NOT NULL DEFAULT 0,
  UNIQUE (distribution_id, textbook_id),
  CHECK (distributed_qty >= 0 AND returned_qty >= 0 AND missing_qty >= 0),
  CHECK (returned_qty + missing_qty <= distributed_qty),
  FOREIGN KEY (distribution_id) REFERENCES distributions(id) ON DELETE CASCADE,
  FOREIGN KEY (textbook_id) REFERENCES textbooks(id)
);

-- Individual distributions (one textbook to one teacher or student)
CREATE TABLE IF NOT EXISTS individual_distributions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  textbook_id INTEGER NOT NULL,
  recipient_type TEXT NOT NULL CHECK (recipient_type IN ('teacher', 'student')),
  recipient_id INTEGER NOT NULL,
  recipient_name TEXT NOT NULL,           -- snapshot at distribution time
  quantity INTEGER NOT NULL CHECK (quantity >= 1),
  returned_qty INTEGER NOT NULL DEFAULT 0,
  missing_qty INTEGER NOT NULL DEFAULT 0,
  academic_year TEXT NOT NULL,
  distributed_at TEXT NOT NULL,
  returned_at TEXT,
  status TEXT NOT NULL DEFAULT 'distributed',
  notes TEXT,
  return_notes TEXT,
  request_key TEXT,
  CHECK (returned_qty >= 0 AND missing_qty >= 0),
  CHECK (returned_qty + missing_qty <= quantity),
  FOREIGN KEY (textbook_id) REFERENCES textbooks(id)
);

-- Key/value application settings (current academic year, ...)
CREATE TABLE IF NOT EXISTS app_settings (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""
