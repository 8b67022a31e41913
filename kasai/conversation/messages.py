"""
messages.py — User-facing reply text (Bahasa Indonesia).

Kept apart from the state machine so flows stay free of string assembly.
"""
from typing import Sequence

from kasai.conversation.parsing import format_rupiah
from kasai.sessions.schemas import (
    Category,
    EditField,
    PendingTransaction,
    TransactionSnapshot,
    TransactionType,
)

GENERIC_APOLOGY = "❌ Maaf, terjadi kesalahan pada sistem. Silakan coba lagi sebentar lagi."
CANCELLED = "✅ Dibatalkan. Tidak ada perubahan yang disimpan."
DELETE_ABORTED = "👍 Oke, transaksi tidak jadi dihapus."
INVALID_AMOUNT = "❌ Jumlah harus berupa angka positif. Contoh: 50000, 50rb, atau 1,5jt.\nKetik *batal* untuk membatalkan."
INVALID_DESCRIPTION = "❌ Deskripsi tidak boleh kosong. Ketik deskripsi baru atau *batal*."
INVALID_DATE = (
    "❌ Format tanggal tidak dikenali. Gunakan DD/MM/YYYY, DD-MM-YYYY, YYYY-MM-DD, "
    "*hari ini* atau *kemarin*.\nKetik *batal* untuk membatalkan."
)
AI_EDIT_UNCLEAR = (
    "🤔 Aku belum yakin perubahan apa yang kamu mau. Coba jelaskan lagi, "
    "misalnya: \"ubah jumlahnya jadi 75rb\".\nKetik *batal* untuk membatalkan."
)
NOT_UNDERSTOOD = (
    "🤔 Maaf, aku belum paham. Coba tulis seperti \"makan siang 50rb\" atau "
    "\"gaji 5jt\". Ketik /help untuk bantuan."
)
HELP = (
    "📖 *Bantuan KasAI*\n"
    "• Tulis transaksi biasa, contoh: \"makan siang 50rb\"\n"
    "• /edit [id] — ubah transaksi\n"
    "• /hapus [id] — hapus transaksi\n"
    "• /batal — batalkan proses yang sedang berjalan\n"
    "• /curhat — mode curhat"
)

_FIELD_LABELS = {
    EditField.AMOUNT: "Jumlah",
    EditField.DESCRIPTION: "Deskripsi",
    EditField.CATEGORY: "Kategori",
    EditField.DATE: "Tanggal",
    EditField.AI: "Ubah dengan kalimat bebas (AI)",
}


def _type_label(type: TransactionType) -> str:
    return "Pemasukan" if type is TransactionType.INCOME else "Pengeluaran"


def _numbered(categories: Sequence[Category]) -> str:
    return "\n".join(f"{index}. {category.name}" for index, category in enumerate(categories, start=1))


def describe(snapshot: TransactionSnapshot) -> str:
    lines = [
        f"🆔 #{snapshot.id} — {_type_label(snapshot.type)}",
        f"💰 {format_rupiah(snapshot.amount)}",
        f"📝 {snapshot.description or '-'}",
        f"🏷️ {snapshot.category_name or 'Tanpa kategori'}",
        f"📅 {snapshot.date.strftime('%d/%m/%Y')}",
    ]
    return "\n".join(lines)


def unknown_command(command: str) -> str:
    return f"❓ Perintah {command} tidak dikenal.\n\n{HELP}"


def usage(command: str) -> str:
    return f"📝 Cara pakai: {command} [id transaksi]\nContoh: {command} 123"


def category_prompt(flow: PendingTransaction) -> str:
    return (
        f"📂 {_type_label(flow.type)} {format_rupiah(flow.amount)} — {flow.description}\n"
        f"Pilih kategori (balas nomor atau nama):\n{_numbered(flow.candidate_categories)}\n\n"
        "Ketik *batal* untuk membatalkan."
    )


def category_retry(flow: PendingTransaction) -> str:
    return "❌ Kategori tidak ditemukan.\n" + category_prompt(flow)


def transaction_saved(snapshot: TransactionSnapshot) -> str:
    return f"✅ Transaksi tersimpan!\n{describe(snapshot)}"


def transaction_updated(snapshot: TransactionSnapshot, summary: str = "") -> str:
    header = "✅ Transaksi diperbarui!"
    if summary:
        header += f" ({summary})"
    return f"{header}\n{describe(snapshot)}"


def transaction_deleted(snapshot: TransactionSnapshot) -> str:
    return f"🗑️ Transaksi #{snapshot.id} sudah dihapus."


def transaction_not_found(transaction_id: int) -> str:
    return f"❌ Transaksi #{transaction_id} tidak ditemukan."


def edit_menu(snapshot: TransactionSnapshot) -> str:
    options = "\n".join(f"{field.value}. {label}" for field, label in _FIELD_LABELS.items())
    return (
        f"✏️ Edit transaksi:\n{describe(snapshot)}\n\n"
        f"Apa yang mau diubah? Balas angka 1-5:\n{options}\n\n"
        "Ketik *batal* untuk membatalkan."
    )


def edit_menu_retry(snapshot: TransactionSnapshot) -> str:
    return "❌ Pilihan tidak valid.\n" + edit_menu(snapshot)


def field_prompt(field: EditField, snapshot: TransactionSnapshot, categories: Sequence[Category]) -> str:
    if field is EditField.AMOUNT:
        return f"💰 Jumlah saat ini {format_rupiah(snapshot.amount)}. Ketik jumlah baru:"
    if field is EditField.DESCRIPTION:
        return f"📝 Deskripsi saat ini: {snapshot.description or '-'}. Ketik deskripsi baru:"
    if field is EditField.CATEGORY:
        return f"🏷️ Pilih kategori baru (balas nomor atau nama):\n{_numbered(categories)}"
    if field is EditField.DATE:
        return (
            f"📅 Tanggal saat ini {snapshot.date.strftime('%d/%m/%Y')}. "
            "Ketik tanggal baru (DD/MM/YYYY, *hari ini*, atau *kemarin*):"
        )
    return "🤖 Jelaskan perubahan yang kamu mau, contoh: \"jumlahnya 75rb dan kategorinya transportasi\"."


def delete_prompt(snapshot: TransactionSnapshot) -> str:
    return (
        f"⚠️ Hapus transaksi ini?\n{describe(snapshot)}\n\n"
        "Balas *YA* untuk menghapus atau *BATAL* untuk membatalkan."
    )


def delete_retry(snapshot: TransactionSnapshot) -> str:
    return "❓ Balas *YA* atau *HAPUS* untuk menghapus, *BATAL* atau *TIDAK* untuk membatalkan.\n\n" + describe(snapshot)
