from __future__ import annotations

START_TEXT = (
    "🎨 <b>Stable Diffusion Bot</b>\n"
    "\n"
    "Generate images with /txt2img or transform a photo with /img2img.\n"
    "Mention me or reply to my messages to chat. Send /help for all options."
)

HELP_TEXT = (
    "<b>Commands</b>\n"
    "/txt2img &lt;prompt&gt; [options] — generate images\n"
    "/img2img &lt;prompt&gt; [options] — attach a photo or reply to one\n"
    "/preferences list | set name=value ... | reset name ... | clear\n"
    "/lora list [tag] | info &lt;name&gt; — LoRA activation keys (/lora_nsfw for NSFW ones)\n"
    "/queue — show the queue\n"
    "/cancel — cancel your waiting requests\n"
    "\n"
    "<b>Options</b>\n"
    "<code>negative=\"...\"</code> <code>size=768x512</code> <code>width=</code> <code>height=</code> "
    "<code>count=</code> <code>seed=</code> <code>steps=</code> <code>cfg=</code> "
    "<code>checkpoint=</code> <code>adetailer=on</code>\n"
    "txt2img: <code>hires=2</code> <code>hires_steps=</code> <code>hires_denoising=</code>\n"
    "img2img: <code>denoising=</code> <code>resize_mode=crop</code>\n"
    "ControlNet (reply to a photo): <code>controlnet=&lt;type&gt;</code> <code>controlnet_weight=</code>"
)

ACCESS_DENIED_TEXT = "⛔ <b>Access denied</b>\nYour ID is not on the list of allowed users."

NOTHING_TO_CANCEL_TEXT = "Nothing to cancel."
