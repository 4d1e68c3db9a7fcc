"""
User-facing message texts (Bahasa Indonesia).
"""

DEFAULT_CONTACT_NAME = "Kak"
DEFAULT_SURVEY_NAME = "Bapak/Ibu"


def welcome_message(contact: str) -> str:
    return (
        f"Halo Kak *{contact}*! 👋\n\n"
        "Saya *PPID Assistant*, konsultan virtual cerdas dari BRIDA Provinsi Jawa Tengah.\n\n"
        "Saya siap membantu menjawab pertanyaan Anda seputar layanan publik, riset, dan inovasi daerah.\n\n"
        "_Ada yang bisa saya bantu?_"
    )


def handover_message(contact: str) -> str:
    return (
        f"Baik Kak *{contact}*, saya akan menghubungkan Anda dengan petugas kami. 🙏\n\n"
        "Mohon tunggu sebentar ya, petugas akan segera merespons.\n\n"
        "_Terima kasih atas kesabarannya._"
    )


def survey_prompt(name: str) -> str:
    return (
        f"Terima kasih telah menghubungi PPID BRIDA Jawa Tengah, {name} 🙏\n\n"
        "Mohon nilai pelayanan kami (ketik angka 1-5):\n\n"
        "⭐ 1 = Sangat Kecewa\n"
        "⭐⭐ 2 = Kurang Puas\n"
        "⭐⭐⭐ 3 = Cukup\n"
        "⭐⭐⭐⭐ 4 = Puas\n"
        "⭐⭐⭐⭐⭐ 5 = Sangat Puas\n\n"
        "_Ketik angka saja (misal: 5)_"
    )


def inactivity_survey_prompt(name: str) -> str:
    return (
        f"Halo {name}, sepertinya Anda sedang sibuk. Terima kasih telah menghubungi PPID BRIDA Jawa Tengah.\n\n"
        "Mohon berikan penilaian Anda (1-5):\n\n"
        "1 = Sangat Kecewa\n"
        "5 = Sangat Puas"
    )


def operator_close_survey_prompt(name: str) -> str:
    return (
        f"Terima kasih telah menghubungi PPID BRIDA Jawa Tengah, {name}.\n\n"
        "Mohon nilai pelayanan kami (1-5):\n\n"
        "1 = Sangat Kecewa\n"
        "5 = Sangat Puas"
    )


LOW_RATING_FEEDBACK_PROMPT = (
    "Mohon maaf jika pelayanan kami belum maksimal. 🙏\n\n"
    "Bolehkah Anda memberi masukan singkat mengenai apa yang perlu kami perbaiki?"
)


def rating_thanks(rating: int) -> str:
    return f"Terima kasih atas penilaian Anda ({rating}/5). Semoga sehat selalu! 👋"


FEEDBACK_ACK = (
    "Terima kasih atas masukannya. Kami akan menjadikan ini bahan evaluasi "
    "untuk meningkatkan kecerdasan AI kami. 🙏"
)

TECHNICAL_ERROR = (
    "Aduh Kak, maaf banget lagi ada gangguan teknis. Coba lagi beberapa saat ya, "
    "atau langsung hubungi kantor PPID aja. 🙏"
)

# Stand-in text for uncaptioned media, in the buffer and the prompt
IMAGE_PLACEHOLDER = "[Dikirim Gambar]"
DOCUMENT_PLACEHOLDER = "[Dikirim Dokumen]"
