"""Unit tests for parsers module."""

import pytest
import pandas as pd
import numpy as np
from io import BytesIO

from school_analytics.parsers import (
    normalize_col_name,
    detect_roster_columns,
    to_int,
    load_table,
    parse_roster,
)


def make_roster_df() -> pd.DataFrame:
    return pd.DataFrame({
        'Nome do Aluno': ['Ana Souza', '', 'Bruno Lima', 'Ana Repetida', 'Carla Dias'],
        'E-mail': ['ANA@escola.com ', 'x@escola.com', 'bruno-at-escola', 'ana@escola.com', 'carla@escola.com'],
        'Turma': ['1A', '1A', '1A', '2B', ''],
        'XP': ['120', '', '', '', 'abc'],
    })


def test_normalize_col_name():
    """Test column name normalization."""
    assert normalize_col_name('  Nome  do Aluno ') == 'nome do aluno'
    assert normalize_col_name('Matrícula') == 'matricula'
    assert normalize_col_name('E-MAIL') == 'e-mail'
    assert normalize_col_name(None) == ''
    assert normalize_col_name(np.nan) == ''


def test_detect_roster_columns():
    """Test name/email/class detection."""
    mapping = detect_roster_columns(['Nome', 'E-mail', 'Turma'])
    assert mapping == {'name': 'Nome', 'email': 'E-mail', 'class': 'Turma', 'xp': None}

    mapping = detect_roster_columns(['Student Name', 'Email', 'Class', 'Points'])
    assert mapping['name'] == 'Student Name'
    assert mapping['class'] == 'Class'
    assert mapping['xp'] == 'Points'


def test_detect_roster_columns_email_not_taken_as_name():
    """'Email do aluno' contains 'aluno' but is the email column."""
    mapping = detect_roster_columns(['Email do aluno', 'Nome completo'])
    assert mapping['email'] == 'Email do aluno'
    assert mapping['name'] == 'Nome completo'
    assert mapping['class'] is None


def test_detect_roster_columns_missing():
    with pytest.raises(ValueError, match="Nome"):
        detect_roster_columns(['Nome', 'Telefone'])
    with pytest.raises(ValueError, match="Telefone"):
        detect_roster_columns(['Email', 'Telefone'])


def test_to_int():
    assert to_int('12') == 12
    assert to_int('12.0') == 12
    assert to_int(7) == 7
    assert to_int('') == 0
    assert to_int('  ') == 0
    assert to_int('abc') == 0
    assert to_int(None) == 0
    assert to_int(float('nan')) == 0


def test_parse_roster():
    """Test row validation, normalization and deduplication."""
    students, summary = parse_roster(make_roster_df())

    assert summary.total == 5
    assert summary.imported == 2
    assert summary.skipped == 3
    assert summary.errors == [
        'Linha 3: Nome ou email vazio',
        'Linha 4: Email inválido (bruno-at-escola)',
        'Linha 5: Email ana@escola.com duplicado',
    ]

    # First row for a repeated email wins
    ana = students[0]
    assert ana.name == 'Ana Souza'
    assert ana.email == 'ana@escola.com'
    assert ana.id == 'ana@escola.com'
    assert ana.class_id == '1A'
    assert ana.xp == 120

    carla = students[1]
    assert carla.class_id is None
    assert carla.xp == 0


def test_parse_roster_empty():
    with pytest.raises(ValueError, match="empty"):
        parse_roster(pd.DataFrame(columns=['Nome', 'Email']))


def test_load_table_csv():
    """Test CSV loading with BOM and blank cells."""
    data = '\ufeffNome,Email,Turma\nAna,ana@escola.com,\nBruno,bruno@escola.com,1A\n'.encode('utf-8')
    df = load_table(data, 'alunos.csv')

    assert list(df.columns) == ['Nome', 'Email', 'Turma']
    assert len(df) == 2
    assert df['Turma'].iloc[0] == ''


def test_load_table_csv_latin1():
    data = 'Nome,Email\nJoão,joao@escola.com\n'.encode('latin-1')
    df = load_table(data, 'ALUNOS.CSV')
    assert df['Nome'].iloc[0] == 'João'


def test_load_table_xlsx():
    """Test Excel loading reads the first sheet as text."""
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        make_roster_df().to_excel(writer, sheet_name='Alunos', index=False)
        pd.DataFrame({'Other': [1]}).to_excel(writer, sheet_name='Outra', index=False)

    df = load_table(buffer.getvalue(), 'roster.xlsx')

    assert list(df.columns) == ['Nome do Aluno', 'E-mail', 'Turma', 'XP']
    assert len(df) == 5

    students, summary = parse_roster(df)
    assert summary.imported == 2
    assert students[0].xp == 120


def test_load_table_invalid():
    with pytest.raises(ValueError, match="Invalid file type"):
        load_table(b'whatever', 'notes.txt')
    with pytest.raises(ValueError, match="Could not open Excel file"):
        load_table(b'not a zip file', 'roster.xlsx')
    with pytest.raises(ValueError, match="empty"):
        load_table(b'', 'empty.csv')


def test_detect_roster_columns_xp_whole_word():
    """'Experiência' contains 'xp' only after normalization, not as a word."""
    mapping = detect_roster_columns(['Nome', 'Email', 'Experiência'])
    assert mapping['xp'] is None

    mapping = detect_roster_columns(['Nome', 'Email', 'Experiência anterior', 'XP total'])
    assert mapping['xp'] == 'XP total'


def test_load_table_rejects_xls():
    """Legacy .xls workbooks are not accepted."""
    with pytest.raises(ValueError, match="Invalid file type"):
        load_table(b'\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1' + b'\x00' * 504, 'roster.xls')
