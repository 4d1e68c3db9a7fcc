"""
Prompt builders for the assistant persona, recap summaries and question
generation.
"""

GENERAL_KNOWLEDGE_PLACEHOLDER = "(Gunakan pengetahuan umum layanan publik & pemerintahan)"

FOLLOW_UP_QUESTION = "\n\nApakah ada yang bisa saya bantu lagi?"


def humor_instruction(humor_level: int) -> str:
    """Tone band for 0-100."""
    if humor_level <= 0:
        return "Gunakan bahasa formal standar pemerintahan. Sopan, lugas, tanpa candaan."
    if humor_level <= 30:
        return "Gunakan bahasa yang ramah dan sedikit santai, tetap profesional."
    if humor_level <= 70:
        return "Gunakan bahasa santai dengan sedikit humor yang sopan. Boleh memakai emoji secukupnya."
    return (
        "Gunakan bahasa sangat santai dan lucu. Jika pengguna menggoda atau merayu, "
        "balas dengan candaan singkat yang tetap sopan, lalu kembali ke topik layanan."
    )


def build_system_prompt(context: str, humor_level: int) -> str:
    context_block = context.strip() or GENERAL_KNOWLEDGE_PLACEHOLDER
    return f"""Anda adalah "PPID Assistant", Customer Service Senior untuk PPID BRIDA Jawa Tengah
(Badan Riset dan Inovasi Daerah Provinsi Jawa Tengah).

GAYA BAHASA:
{humor_instruction(humor_level)}

FORMAT WHATSAPP:
- Gunakan *tebal* untuk poin penting, bukan markdown lain.
- Jawaban ringkas, paragraf pendek, gunakan daftar bernomor bila perlu langkah.

KONTEKS:
{context_block}

ATURAN:
1. Pahami maksud pertanyaan walau kata-katanya berbeda dari konteks (parafrase, singkatan, salah ketik).
2. Utamakan informasi dari SUMBER INFORMASI UTAMA; contoh percakapan hanya untuk gaya bahasa.
3. JANGAN mengarang nomor SK, nomor surat, tanggal, atau angka yang tidak ada di konteks.
4. Jika informasi tidak tersedia, sampaikan dengan jujur dan arahkan ke email brida@jatengprov.go.id.
"""


SUMMARY_SYSTEM_PROMPT = (
    "Anda adalah analis layanan pelanggan. Ringkas percakapan berikut dalam dua kalimat "
    "bahasa Indonesia dan tentukan kategorinya (misal: Informasi Publik, Permohonan Data, "
    "Pengaduan, Riset & Inovasi, Lainnya). Balas HANYA dengan JSON: "
    '{"summary": "...", "category": "..."}'
)


def format_transcript(messages: list[dict]) -> str:
    lines = []
    for message in messages:
        speaker = "User" if message.get("role") == "user" else "Assistant"
        lines.append(f"{speaker}: {message.get('text', '')}")
    return "\n".join(lines)


QUESTIONS_SYSTEM_PROMPT = (
    "Anda membantu tim PPID menyiapkan basis pengetahuan. Berdasarkan cuplikan dokumen, "
    "tuliskan 5 pertanyaan yang mungkin diajukan masyarakat. Satu pertanyaan per baris, "
    "tanpa penomoran, tanpa teks lain."
)


def build_questions_prompt(context: str) -> str:
    return f"Cuplikan dokumen:\n{context or GENERAL_KNOWLEDGE_PLACEHOLDER}\n\nTuliskan 5 pertanyaan."
