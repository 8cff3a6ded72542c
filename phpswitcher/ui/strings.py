STRINGS = {
    "mi_busy": "Busy, please wait...",
    "mi_unsure": "PHP version could not be determined",
    "mi_php_version": "Active: PHP {version}",
    "mi_switch_to": "Switch to PHP {version}",
    "mi_reload": "Refresh information",
    "mi_restart_php": "Restart PHP-FPM",
    "mi_restart_nginx": "Restart Nginx",
    "mi_restart_dnsmasq": "Restart DnsMasq",
    "mi_restart_all": "Restart all services",
    "mi_force_recover": "Force load latest PHP version",
    "mi_phpinfo": "Show phpinfo()",
    "mi_open_config": "Open php.ini folder",
    "mi_open_valet_config": "Open Valet config folder",
    "mi_extensions": "Extensions",
    "mi_limits": "Limits: memory {memory}, upload {upload}, POST {post}",
    "mi_quit": "Quit",

    "alert.cannot_start.title": "PHP Switcher cannot start",
    "alert.cannot_start.info": "{diagnostic}\n\n{hint}",

    "notification.version_changed_title": "PHP {version} is now active",
    "notification.version_changed_desc": "Your sites are now served with PHP {version}.",
    "notification.switch_unconfirmed_title": "PHP switch may have failed",
    "notification.switch_unconfirmed_desc": "Requested PHP {target}, active is {actual}.",
    "alert.force_reload.title": "Fixing your PHP setup",
    "alert.force_reload.info": "All PHP services are being stopped and the default PHP relinked. This can take a while.",
    "alert.force_reload_done.title": "PHP setup repaired",
    "alert.force_reload_done.info": "Active PHP is now {version}.",
}


def tr(key: str, **kwargs) -> str:
    text = STRINGS.get(key, key)
    return text.format(**kwargs) if kwargs else text
